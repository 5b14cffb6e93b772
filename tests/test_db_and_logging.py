import json
import logging

from sqlalchemy import create_engine, event, text

from stablehub import db as db_module
from stablehub.config import settings
from stablehub.logging import setup_logging


class TestEngineOptions:
    def test_sqlite_skips_pool_sizing(self):
        assert db_module._engine_kwargs("sqlite:///./var/dev.db") == {"connect_args": {"check_same_thread": False}}

    def test_server_pool_follows_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "db_pool_size", 12)
        monkeypatch.setattr(settings, "db_max_overflow", 3)
        kwargs = db_module._engine_kwargs("postgresql+psycopg2://stable:pw@db:5432/stablehub")
        assert kwargs == {"pool_size": 12, "max_overflow": 3, "pool_recycle": settings.db_pool_recycle_seconds}

    def test_sqlite_foreign_keys_enforced(self):
        eng = create_engine("sqlite://")
        event.listen(eng, "connect", db_module._enable_sqlite_foreign_keys)
        with eng.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
        eng.dispose()


class TestRequestLogging:
    def test_request_id_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"

    def test_request_id_generated(self, client):
        first = client.get("/health").headers["X-Request-ID"]
        second = client.get("/health").headers["X-Request-ID"]
        assert first and second and first != second

    def test_completion_logged_with_route_context(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="stablehub.request"):
            client.get("/health", headers={"X-Request-ID": "req-42"})
        events = [json.loads(r.getMessage()) for r in caplog.records if r.name == "stablehub.request"]
        completed = [e for e in events if e["event"] == "request_completed"]
        assert completed
        assert completed[-1]["request_id"] == "req-42"
        assert completed[-1]["path"] == "/health"
        assert completed[-1]["status_code"] == 200

    def test_level_override(self):
        setup_logging("warning")
        assert logging.getLogger().level == logging.WARNING
        setup_logging()
