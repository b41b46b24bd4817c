import asyncio

import pytest
from sqlalchemy import inspect

from app.core.config import Settings
from app.core.exceptions import StorePersistenceError
from app.db.request_store import build_request_store
from app.db.sql_store import SqlRequestStore
from app.models.equipment_request import ApprovalStatus, Decision

from _support import START, build_service, make_form, make_record


def _database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'requests.db'}"


def _decision() -> Decision:
    return Decision(status=ApprovalStatus.REJECTED, approved_by="Kofi Boateng", approval_date="2025-03-11")


def test_schema_has_request_and_counter_tables(tmp_path):
    store = SqlRequestStore(_database_url(tmp_path))
    try:
        tables = set(inspect(store.engine).get_table_names())
    finally:
        store.close()
    assert {"storedrequest", "requestcounter"} <= tables


def test_sequence_numbers_survive_restart(tmp_path):
    store = SqlRequestStore(_database_url(tmp_path))
    assert [store.next_sequence_number() for _ in range(3)] == [1, 2, 3]
    store.close()

    reopened = SqlRequestStore(_database_url(tmp_path))
    try:
        assert reopened.next_sequence_number() == 4
    finally:
        reopened.close()


def test_put_get_all_ids_delete(tmp_path):
    store = SqlRequestStore(_database_url(tmp_path))
    try:
        first = make_record("REQ-0010325")
        second = make_record("REQ-0020325")
        store.put(first.request_id, first)
        store.put(second.request_id, second)

        loaded = store.get("REQ-0010325")
        assert loaded.model_dump() == first.model_dump()
        assert loaded.submitted_at == START
        assert store.all_ids() == ["REQ-0010325", "REQ-0020325"]
        assert store.get("REQ-9990325") is None

        assert store.delete("REQ-0010325") is True
        assert store.delete("REQ-0010325") is False
        assert store.all_ids() == ["REQ-0020325"]
    finally:
        store.close()


def test_put_replaces_existing_record(tmp_path):
    store = SqlRequestStore(_database_url(tmp_path))
    try:
        record = make_record("REQ-0010325")
        store.put(record.request_id, record)
        store.put(record.request_id, record.model_copy(update={"department": "Logistics"}))
        assert store.get(record.request_id).department == "Logistics"
        assert store.all_ids() == ["REQ-0010325"]
    finally:
        store.close()


def test_record_decision_applies_once(tmp_path):
    store = SqlRequestStore(_database_url(tmp_path))
    try:
        record = make_record("REQ-0010325")
        store.put(record.request_id, record)

        assert store.record_decision(record.request_id, "0" * 64, _decision()) is None

        updated = store.record_decision(record.request_id, record.approval_token, _decision())
        assert updated.approval_status == ApprovalStatus.REJECTED
        assert updated.token_used is True

        assert store.record_decision(record.request_id, record.approval_token, _decision()) is None
        persisted = store.get(record.request_id)
        assert persisted.token_used is True
        assert persisted.approved_by == "Kofi Boateng"
    finally:
        store.close()


def test_counter_starts_after_existing_requests(tmp_path):
    store = SqlRequestStore(_database_url(tmp_path))
    store.put("REQ-0120325", make_record("REQ-0120325"))
    with store.engine.begin() as conn:
        conn.exec_driver_sql("DELETE FROM requestcounter")
    store.close()

    reopened = SqlRequestStore(_database_url(tmp_path))
    try:
        assert reopened.next_sequence_number() == 13
    finally:
        reopened.close()


def test_build_request_store_selects_backend(tmp_path):
    sql_settings = Settings(REQUEST_STORE_BACKEND="sql", DATABASE_URL=_database_url(tmp_path), ENVIRONMENT="test")
    store = build_request_store(sql_settings)
    try:
        assert isinstance(store, SqlRequestStore)
    finally:
        store.close()

    file_settings = Settings(
        REQUEST_STORE_BACKEND="file",
        REQUEST_STORE_FILE=str(tmp_path / "store.json"),
        REQUEST_COUNTER_FILE=str(tmp_path / "counter.json"),
        ENVIRONMENT="test",
    )
    file_store = build_request_store(file_settings)
    assert file_store.all_ids() == []
    assert type(file_store).__name__ == "FileRequestStore"


def test_submission_persists_through_sql_backend(tmp_path):
    store = SqlRequestStore(_database_url(tmp_path))
    try:
        record = asyncio.run(build_service(store).submit_request(make_form())).record
        assert store.all_ids() == [record.request_id]
        assert store.get(record.request_id).submitted_at == record.submitted_at
    finally:
        store.close()


def test_read_failures_are_persistence_errors(tmp_path):
    store = SqlRequestStore(_database_url(tmp_path))
    try:
        with store.engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE storedrequest")

        with pytest.raises(StorePersistenceError):
            store.get("REQ-0010325")
        with pytest.raises(StorePersistenceError):
            store.all_ids()
    finally:
        store.close()
