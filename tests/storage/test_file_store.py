"""
File-backed store tests: persistence, hydration, corruption and write failure.
"""

import builtins
import json
import os

import pytest

from thread_engine.contracts.errors import IntegrityError, StoreUnavailableError
from thread_engine.contracts.facts import EntityRef, assert_fact, retract_fact
from thread_engine.contracts.schema import MESSAGE_CREATED_AT, OPEN_THREAD, TAG_NAME
from thread_engine.storage import (
    FactStoreConfig, FileFactStore, InMemoryFactStore, create_fact_store
)
from thread_engine.storage.codec import decode_entry, encode_entry

from ..fixtures import at, stepping_clock

U1 = EntityRef.user("u1")
U2 = EntityRef.user("u2")
TH1 = EntityRef.thread("th1")


class _TornWriter:
    """File handle whose write lands half the text and then fails."""

    def __init__(self, handle):
        self._handle = handle

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self._handle.close()
        return False

    def write(self, text):
        self._handle.write(text[: len(text) // 2])
        self._handle.flush()
        raise OSError(28, "No space left on device")

    def flush(self):
        self._handle.flush()


class TestFilePersistence:

    def test_reopen_restores_state_and_history(self, tmp_path):
        store = FileFactStore(str(tmp_path), clock=stepping_clock())
        store.apply_transaction((assert_fact(U1, OPEN_THREAD, TH1),))
        store.apply_transaction((retract_fact(U1, OPEN_THREAD, TH1),))

        reopened = FileFactStore(str(tmp_path), clock=stepping_clock())

        assert reopened.basis == 2
        assert not reopened.current_snapshot().holds(U1, OPEN_THREAD, TH1)
        assert [h.added for h in reopened.history_of(OPEN_THREAD, U1)] == [True, False]
        assert reopened.verify_integrity() == (True, None)

    def test_one_line_per_transaction(self, tmp_path):
        store = FileFactStore(str(tmp_path), clock=stepping_clock())
        store.apply_transaction((assert_fact(U1, OPEN_THREAD, TH1),))
        store.apply_transaction((assert_fact(U1, OPEN_THREAD, TH1),))

        with open(store.log_file, encoding="utf-8") as f:
            assert len(f.readlines()) == 1

    def test_reopened_store_keeps_appending(self, tmp_path):
        FileFactStore(str(tmp_path), clock=stepping_clock()).apply_transaction(
            (assert_fact(U1, OPEN_THREAD, TH1),)
        )
        later_clock = stepping_clock(start=at(days=1).value)
        reopened = FileFactStore(str(tmp_path), clock=later_clock)
        report = reopened.apply_transaction((retract_fact(U1, OPEN_THREAD, TH1),))

        assert report.tx == 2


class TestCorruption:

    def test_tampered_line_raises_integrity_error(self, tmp_path):
        store = FileFactStore(str(tmp_path), clock=stepping_clock())
        store.apply_transaction((assert_fact(U1, OPEN_THREAD, TH1),))

        with open(store.log_file, encoding="utf-8") as f:
            data = json.loads(f.readline())
        data["datoms"][0]["v"] = {"ref": ["thread", "th-forged"]}
        with open(store.log_file, "w", encoding="utf-8") as f:
            f.write(json.dumps(data) + "\n")

        with pytest.raises(IntegrityError) as exc_info:
            FileFactStore(str(tmp_path), clock=stepping_clock())
        assert exc_info.value.sequence == 1

    def test_garbage_line_raises_integrity_error(self, tmp_path):
        with open(os.path.join(tmp_path, FileFactStore.LOG_FILENAME), "w") as f:
            f.write("not json\n")

        with pytest.raises(IntegrityError):
            FileFactStore(str(tmp_path))


class TestWriteFailure:

    def test_failed_write_leaves_state_untouched(self, tmp_path):
        store = FileFactStore(str(tmp_path), clock=stepping_clock())
        os.makedirs(store.log_file)

        with pytest.raises(StoreUnavailableError):
            store.apply_transaction((assert_fact(U1, OPEN_THREAD, TH1),))

        assert store.basis == 0
        assert not store.current_snapshot().exists(TH1)

    def test_torn_write_is_rolled_back_before_next_commit(self, tmp_path, monkeypatch):
        store = FileFactStore(str(tmp_path), clock=stepping_clock())
        store.apply_transaction((assert_fact(U1, OPEN_THREAD, TH1),))
        size_before = os.path.getsize(store.log_file)

        real_open = builtins.open
        monkeypatch.setattr(
            "thread_engine.storage.open",
            lambda path, mode="r", **kwargs: _TornWriter(real_open(path, mode, **kwargs)),
            raising=False
        )
        with pytest.raises(StoreUnavailableError):
            store.apply_transaction((retract_fact(U1, OPEN_THREAD, TH1),))
        monkeypatch.undo()

        assert os.path.getsize(store.log_file) == size_before
        assert store.current_snapshot().holds(U1, OPEN_THREAD, TH1)

        store.apply_transaction((assert_fact(U2, OPEN_THREAD, TH1),))
        reopened = FileFactStore(str(tmp_path), clock=stepping_clock())

        assert reopened.basis == 2
        snapshot = reopened.current_snapshot()
        assert snapshot.holds(U1, OPEN_THREAD, TH1)
        assert snapshot.holds(U2, OPEN_THREAD, TH1)
        assert reopened.verify_integrity() == (True, None)

    def test_unusable_directory(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")

        with pytest.raises(StoreUnavailableError):
            FileFactStore(str(blocker / "facts"))


class TestCodec:

    def test_entry_survives_encoding(self):
        store = InMemoryFactStore(clock=stepping_clock())
        message = EntityRef.message("m1")
        store.apply_transaction((
            assert_fact(message, MESSAGE_CREATED_AT, at(minutes=3)),
            assert_fact(EntityRef.tag("t1"), TAG_NAME, "design"),
        ))
        entry = store.log_entries()[0]

        decoded = decode_entry(encode_entry(entry))

        assert decoded == entry


class TestFactory:

    def test_memory_backend(self):
        assert type(create_fact_store()) is InMemoryFactStore

    def test_file_backend(self, tmp_path):
        store = create_fact_store(FactStoreConfig(backend_type="file", storage_dir=str(tmp_path)))
        assert isinstance(store, FileFactStore)

    def test_file_backend_requires_dir(self):
        with pytest.raises(ValueError):
            create_fact_store(FactStoreConfig(backend_type="file"))

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_fact_store(FactStoreConfig(backend_type="postgres"))
