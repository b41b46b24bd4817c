import hmac
import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from app.core.exceptions import StorePersistenceError
from app.db.request_store import RequestStore
from app.models.equipment_request import ApprovalStatus, Decision, RequestRecord


logger = logging.getLogger(__name__)

REQUEST_ID_PATTERN = re.compile(r"^REQ-(\d{3,})(\d{4})$")


def sequence_from_request_id(request_id: str) -> Optional[int]:
    match = REQUEST_ID_PATTERN.match(request_id or "")
    if not match:
        return None
    return int(match.group(1))


class FileRequestStore(RequestStore):
    """Request records and the sequence counter kept in two JSON files.

    Each mutation rewrites the whole file through a temp file and an atomic
    rename, so a reader never sees a half-written table. All mutations go
    through one re-entrant lock, which makes ``record_decision`` a real
    compare-and-set within this process.
    """

    def __init__(self, store_path: Union[str, Path], counter_path: Union[str, Path]):
        self.store_path = Path(store_path)
        self.counter_path = Path(counter_path)
        self._lock = threading.RLock()
        self._table: dict[str, dict[str, Any]] = self._load_table()
        self._counter = self._load_counter()

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Error loading %s, starting empty: %s", path, exc)
            return None
        try:
            return json.loads(text)
        except ValueError as exc:
            # Keep the unreadable copy; the next write would otherwise replace it.
            backup = path.with_name(f"{path.name}.corrupt")
            os.replace(path, backup)
            logger.error("Error loading %s, moved it to %s and starting empty: %s", path, backup, exc)
            return None

    def _load_table(self) -> dict[str, dict[str, Any]]:
        parsed = self._read_json(self.store_path)
        if not isinstance(parsed, dict):
            return {}
        return {str(key): value for key, value in parsed.items() if isinstance(value, dict)}

    def _load_counter(self) -> int:
        parsed = self._read_json(self.counter_path)
        counter = 0
        if isinstance(parsed, dict):
            try:
                counter = int(parsed.get("counter") or 0)
            except (TypeError, ValueError):
                counter = 0

        # A lost or stale counter file must not reissue numbers already in use.
        issued = [sequence_from_request_id(request_id) for request_id in self._table]
        highest = max((seq for seq in issued if seq is not None), default=0)
        if highest > counter:
            logger.warning(
                "Request counter %s is behind stored requests; resuming from %s.",
                counter,
                highest,
            )
            counter = highest
        return counter

    def _write_json(self, path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                json.dump(payload, handle, indent=2, ensure_ascii=True)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error("Error saving %s: %s", path, exc)
            raise StorePersistenceError(f"Failed to persist {path.name}", cause=exc) from exc

    def _parse(self, request_id: str, data: dict[str, Any]) -> Optional[RequestRecord]:
        try:
            return RequestRecord.model_validate(data)
        except ValidationError as exc:
            logger.error("Stored request %s is malformed: %s", request_id, exc)
            return None

    def next_sequence_number(self) -> int:
        with self._lock:
            candidate = self._counter + 1
            self._write_json(self.counter_path, {"counter": candidate})
            self._counter = candidate
            return candidate

    def put(self, request_id: str, record: RequestRecord) -> None:
        if record.request_id != request_id:
            raise ValueError(f"Record id {record.request_id} does not match key {request_id}")

        with self._lock:
            table = dict(self._table)
            table[request_id] = record.model_dump(mode="json")
            self._write_json(self.store_path, table)
            self._table = table
        logger.info("Request stored: request_id=%s status=%s", request_id, record.approval_status.value)

    def get(self, request_id: str) -> Optional[RequestRecord]:
        with self._lock:
            data = self._table.get(request_id)
        if data is None:
            return None
        return self._parse(request_id, data)

    def all_ids(self) -> list[str]:
        with self._lock:
            return list(self._table.keys())

    def delete(self, request_id: str) -> bool:
        with self._lock:
            if request_id not in self._table:
                return False
            table = dict(self._table)
            del table[request_id]
            self._write_json(self.store_path, table)
            self._table = table
        logger.info("Request deleted: request_id=%s", request_id)
        return True

    def record_decision(
        self,
        request_id: str,
        token: str,
        decision: Decision,
    ) -> Optional[RequestRecord]:
        with self._lock:
            record = self.get(request_id)
            if record is None:
                return None
            if record.token_used or record.approval_status != ApprovalStatus.PENDING:
                return None
            if not hmac.compare_digest(record.approval_token.encode("utf-8"), token.encode("utf-8")):
                return None

            updated = record.with_decision(decision)
            self.put(request_id, updated)
            return updated

    @property
    def counter(self) -> int:
        with self._lock:
            return self._counter
