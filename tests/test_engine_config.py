"""
Engine configuration and wiring tests.
"""

import logging

import pytest

from thread_engine.contracts.errors import TransactionConflictError
from thread_engine.contracts.facts import EntityRef, assert_fact, retract_fact
from thread_engine.contracts.schema import OPEN_THREAD
from thread_engine.engine import EngineConfig, RecencyConfig, ThreadEngine
from thread_engine.observability import ObservabilityConfig, ObservabilityEngine, setup_logging

from .fixtures import make_engine

ENV_VARS = (
    "THREAD_ENGINE_STORAGE_BACKEND",
    "THREAD_ENGINE_STORAGE_DIR",
    "THREAD_ENGINE_RECENT_WINDOW_DAYS",
    "THREAD_ENGINE_RECENT_LIMIT",
    "THREAD_ENGINE_LOG_LEVEL",
    "THREAD_ENGINE_AUDIT_RETENTION",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestEngineConfig:

    def test_defaults(self, clean_env):
        config = EngineConfig.from_env()

        assert config.storage.backend_type == "memory"
        assert config.storage.storage_dir is None
        assert config.recency.window_days == 7
        assert config.recency.limit == 10
        assert config.observability.log_level == "INFO"
        assert config.observability.retention == 10_000

    def test_reads_environment(self, clean_env, tmp_path):
        clean_env.setenv("THREAD_ENGINE_STORAGE_BACKEND", "file")
        clean_env.setenv("THREAD_ENGINE_STORAGE_DIR", str(tmp_path))
        clean_env.setenv("THREAD_ENGINE_RECENT_WINDOW_DAYS", "14")
        clean_env.setenv("THREAD_ENGINE_RECENT_LIMIT", "25")
        clean_env.setenv("THREAD_ENGINE_LOG_LEVEL", "DEBUG")
        clean_env.setenv("THREAD_ENGINE_AUDIT_RETENTION", "500")

        config = EngineConfig.from_env()

        assert config.storage.backend_type == "file"
        assert config.storage.storage_dir == str(tmp_path)
        assert config.recency.window_days == 14
        assert config.recency.limit == 25
        assert config.observability.log_level == "DEBUG"
        assert config.observability.retention == 500

    def test_invalid_number_raises(self, clean_env):
        clean_env.setenv("THREAD_ENGINE_RECENT_LIMIT", "lots")

        with pytest.raises(ValueError, match="THREAD_ENGINE_RECENT_LIMIT"):
            EngineConfig.from_env()

    def test_negative_window_raises(self):
        with pytest.raises(ValueError):
            RecencyConfig(window_days=-3)


class TestEngineWiring:

    def test_commit_failure_is_audited_and_propagated(self):
        engine = make_engine()
        user, thread = EntityRef.user("u"), EntityRef.thread("t")

        with pytest.raises(TransactionConflictError):
            engine.commit((
                assert_fact(user, OPEN_THREAD, thread),
                retract_fact(user, OPEN_THREAD, thread),
            ))

        entries = engine.observability.get_layer_log("engine")
        assert [e.action for e in entries] == ["commit_failed"]

    def test_reads_record_timing(self):
        engine = make_engine()
        engine.can_user_see_thread("u", "t")
        engine.open_threads_for_user("u")

        points = engine.observability.get_metrics().get_metric("read_duration_ms")
        operations = {dict(p.labels)["operation"] for p in points}
        assert operations == {"can_user_see_thread", "open_threads_for_user"}

    def test_explicit_store_is_used(self):
        engine = make_engine()
        wrapped = ThreadEngine(store=engine.store)
        engine.show_thread("u", "t")

        assert wrapped.users_with_thread_open("t") == frozenset({"u"})


class TestLoggingSetup:

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError):
            setup_logging("CHATTY")

    def test_audit_entries_reach_logger(self, caplog):
        engine = make_engine()
        with caplog.at_level(logging.DEBUG, logger="thread_engine.audit"):
            engine.show_thread("u", "t")

        assert any("transaction_committed" in r.getMessage() for r in caplog.records)


class TestObservabilityRetention:

    def test_audit_log_keeps_newest_entries(self):
        observability = ObservabilityEngine(ObservabilityConfig(retention=3))
        for n in range(5):
            observability.log_audit(action=f"step_{n}", layer="core")

        entries = observability.get_layer_log("core")
        report = observability.generate_audit_report()

        assert [e.action for e in entries] == ["step_2", "step_3", "step_4"]
        assert report["by_layer"] == {"core": 3}
        assert report["collected_by_layer"]["core"] == 5

    def test_counter_total_survives_trimming(self):
        observability = ObservabilityEngine(ObservabilityConfig(retention=3))
        for _ in range(5):
            observability.collect_metric("transactions_total", 1)

        metrics = observability.get_metrics()
        assert len(metrics.get_metric("transactions_total")) == 3
        assert metrics.total("transactions_total") == 5

    def test_retention_must_be_positive(self):
        with pytest.raises(ValueError):
            ObservabilityConfig(retention=0)
