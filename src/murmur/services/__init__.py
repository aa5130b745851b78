"""Business logic services for the Murmur application."""

from .blob_storage import LocalBlobStorage, StoredBlob
from .friendship import FriendshipGraph
from .message_store import MessageStore, NewMessage, ReadReceipt
from .messaging import MessagingService

__all__ = [
    "FriendshipGraph",
    "LocalBlobStorage",
    "MessageStore",
    "MessagingService",
    "NewMessage",
    "ReadReceipt",
    "StoredBlob",
]
