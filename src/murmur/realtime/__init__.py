"""Realtime presence, channel routing and per-connection sessions."""

from .channels import ChannelRouter, Connection, WebSocketConnection, mailbox_channel, pair_channel

__all__ = [
    "ChannelRouter",
    "Connection",
    "WebSocketConnection",
    "mailbox_channel",
    "pair_channel",
]
