from __future__ import annotations

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

ROOT_DIR = Path(__file__).resolve().parents[2]


def _alembic_config(database_url: str) -> Config:
    # No ini file, so the app's logging configuration is left alone.
    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT_DIR / "alembic"))
    cfg.attributes["database_url"] = database_url
    return cfg


@pytest.mark.integration
def test_upgrade_and_downgrade(tmp_path):
    url = f"sqlite+pysqlite:///{tmp_path / 'migrations.db'}"
    cfg = _alembic_config(url)
    engine = create_engine(url)

    command.upgrade(cfg, "head")
    inspector = inspect(engine)
    assert "kv_entries" in inspector.get_table_names()
    columns = {c["name"] for c in inspector.get_columns("kv_entries")}
    assert columns == {"key", "value", "updated_at"}

    command.downgrade(cfg, "base")
    assert "kv_entries" not in inspect(engine).get_table_names()

    engine.dispose()
