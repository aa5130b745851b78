# tests/test_migrations.py
"""The Alembic history builds the same tables as the ORM metadata."""

from sqlalchemy import create_engine, inspect

from murmur.db.session import Base
from murmur.scripts.migrate import run_upgrade_head


def test_upgrade_head_creates_model_tables(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"

    run_upgrade_head(url)

    engine = create_engine(url)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert set(Base.metadata.tables) <= tables
        for name, table in Base.metadata.tables.items():
            columns = {column["name"] for column in inspector.get_columns(name)}
            assert columns == set(table.columns.keys())
    finally:
        engine.dispose()
