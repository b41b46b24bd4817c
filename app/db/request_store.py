"""Persistence contract for equipment request records.

Every backend owns its storage medium exclusively: no other component reads
or writes the underlying files or tables. Mutations are durable before the
call returns.
"""

from abc import ABC, abstractmethod
from typing import Optional

from app.core.config import Settings
from app.models.equipment_request import Decision, RequestRecord


class RequestStore(ABC):
    @abstractmethod
    def next_sequence_number(self) -> int:
        """Issue the next request sequence number, persisted before returning."""

    @abstractmethod
    def put(self, request_id: str, record: RequestRecord) -> None:
        ...

    @abstractmethod
    def get(self, request_id: str) -> Optional[RequestRecord]:
        ...

    @abstractmethod
    def all_ids(self) -> list[str]:
        ...

    @abstractmethod
    def delete(self, request_id: str) -> bool:
        ...

    @abstractmethod
    def record_decision(
        self,
        request_id: str,
        token: str,
        decision: Decision,
    ) -> Optional[RequestRecord]:
        """Consume ``token`` and store ``decision`` in a single write.

        Applies only while the stored record still carries ``token``, has not
        used it and is pending. Returns the updated record, or ``None`` when
        that no longer holds (another decision won the race).
        """

    def close(self) -> None:
        pass


def build_request_store(settings: Settings) -> RequestStore:
    if settings.REQUEST_STORE_BACKEND == "sql":
        from app.db.sql_store import SqlRequestStore

        return SqlRequestStore(
            settings.DATABASE_URL,
            echo=settings.ENVIRONMENT == "development",
        )

    from app.db.file_store import FileRequestStore

    return FileRequestStore(settings.REQUEST_STORE_FILE, settings.REQUEST_COUNTER_FILE)
