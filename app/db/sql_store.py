import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from pydantic import ValidationError
from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from app.core.exceptions import StorePersistenceError
from app.db.engine import create_db_engine, init_db, session_scope
from app.db.file_store import sequence_from_request_id
from app.db.request_store import RequestStore
from app.models.equipment_request import (
    ApprovalStatus,
    Decision,
    RequestCounter,
    RequestRecord,
    StoredRequest,
    as_utc,
)


logger = logging.getLogger(__name__)

COUNTER_NAME = "request"


@contextmanager
def _persistence_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Request store %s failed: %s", action, exc)
        raise StorePersistenceError(f"Failed to {action}", cause=exc) from exc


class SqlRequestStore(RequestStore):
    """Request store backed by a SQL database through SQLModel.

    Decisions are recorded with a conditional UPDATE, so the database decides
    which of several concurrent attempts consumes the token.
    """

    def __init__(self, database_url: str, echo: bool = False, engine: Optional[Engine] = None):
        self.engine = engine or create_db_engine(database_url, echo=echo)
        with _persistence_errors("initialize schema"):
            init_db(self.engine)
            self._ensure_counter()

    def _ensure_counter(self) -> None:
        with session_scope(self.engine) as session:
            if session.get(RequestCounter, COUNTER_NAME) is not None:
                return
            request_ids = session.exec(select(StoredRequest.request_id)).all()
            issued = [sequence_from_request_id(request_id) for request_id in request_ids]
            highest = max((seq for seq in issued if seq is not None), default=0)
            session.add(RequestCounter(name=COUNTER_NAME, value=highest))

    @staticmethod
    def _to_row(record: RequestRecord) -> StoredRequest:
        submitted_at = as_utc(record.submitted_at)
        return StoredRequest(
            request_id=record.request_id,
            approval_token=record.approval_token,
            token_used=record.token_used,
            approval_status=record.approval_status.value,
            submitted_at=submitted_at,
            record_json=record.model_dump_json(),
        )

    def next_sequence_number(self) -> int:
        with _persistence_errors("issue sequence number"):
            with self.engine.begin() as conn:
                conn.execute(
                    update(RequestCounter)
                    .where(RequestCounter.name == COUNTER_NAME)
                    .values(value=RequestCounter.value + 1)
                )
                return conn.execute(
                    select(RequestCounter.value).where(RequestCounter.name == COUNTER_NAME)
                ).scalar_one()

    def put(self, request_id: str, record: RequestRecord) -> None:
        if record.request_id != request_id:
            raise ValueError(f"Record id {record.request_id} does not match key {request_id}")

        with _persistence_errors("store request"):
            with session_scope(self.engine) as session:
                session.merge(self._to_row(record))
        logger.info("Request stored: request_id=%s status=%s", request_id, record.approval_status.value)

    def get(self, request_id: str) -> Optional[RequestRecord]:
        with _persistence_errors("load request"):
            with session_scope(self.engine) as session:
                row = session.get(StoredRequest, request_id)
                if row is None:
                    return None
                record_json = row.record_json

        try:
            record = RequestRecord.model_validate_json(record_json)
        except ValidationError as exc:
            logger.error("Stored request %s is malformed: %s", request_id, exc)
            return None
        return record

    def all_ids(self) -> list[str]:
        with _persistence_errors("list requests"):
            with session_scope(self.engine) as session:
                rows = session.exec(
                    select(StoredRequest.request_id).order_by(
                        StoredRequest.submitted_at.asc(),
                        StoredRequest.request_id.asc(),
                    )
                ).all()
        return list(rows)

    def delete(self, request_id: str) -> bool:
        with _persistence_errors("delete request"):
            with self.engine.begin() as conn:
                result = conn.execute(delete(StoredRequest).where(StoredRequest.request_id == request_id))
        removed = result.rowcount > 0
        if removed:
            logger.info("Request deleted: request_id=%s", request_id)
        return removed

    def record_decision(
        self,
        request_id: str,
        token: str,
        decision: Decision,
    ) -> Optional[RequestRecord]:
        current = self.get(request_id)
        if current is None or current.token_used or current.approval_status != ApprovalStatus.PENDING:
            return None

        updated = current.with_decision(decision)
        with _persistence_errors("record decision"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(StoredRequest)
                    .where(
                        StoredRequest.request_id == request_id,
                        StoredRequest.approval_token == token,
                        StoredRequest.token_used == False,  # noqa: E712
                        StoredRequest.approval_status == ApprovalStatus.PENDING.value,
                    )
                    .values(
                        token_used=True,
                        approval_status=updated.approval_status.value,
                        record_json=updated.model_dump_json(),
                    )
                )

        if result.rowcount != 1:
            return None
        logger.info("Request stored: request_id=%s status=%s", request_id, updated.approval_status.value)
        return updated

    def close(self) -> None:
        self.engine.dispose()
