import base64
import struct
import zlib
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core.approval_tokens import generate_token
from app.db.file_store import FileRequestStore
from app.models.equipment_request import EquipmentItem, EquipmentRequestCreate, RequestRecord
from app.services.mail_service import MailResult
from app.services.notification_service import NotificationService
from app.services.pdf_service import PdfService
from app.services.request_service import RequestService


START = datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)
APPROVER = "approver@example.com"


class FixedClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMailer:
    def __init__(self, fail: bool = False, raise_error: bool = False):
        self.fail = fail
        self.raise_error = raise_error
        self.sent: list[dict] = []

    def send_mail(self, to, subject, html, attachments=None):
        if self.raise_error:
            raise RuntimeError("mailer exploded")
        self.sent.append(
            {
                "to": to,
                "subject": subject,
                "html": html,
                "attachments": list(attachments or []),
            }
        )
        if self.fail:
            return MailResult(recipient=to, ok=False, error="SMTPConnectError: connection refused")
        return MailResult(recipient=to, ok=True, port=587)


def make_form(**overrides) -> EquipmentRequestCreate:
    data = {
        "requester_name": "Ama Mensah",
        "requester_email": "ama@example.com",
        "requester_position": "Site Supervisor",
        "company_name": "Acme Construction",
        "project_site_name": "Harbor Bridge",
        "department": "Operations",
        "date_of_request": "2025-03-10",
        "equipment_items": [
            EquipmentItem(name="Concrete mixer", quantity="2", purpose="Deck pour", required_date="2025-03-20"),
        ],
        "signature": "Ama Mensah",
        "signature_type": "typed",
        "requester_date": "2025-03-10",
    }
    data.update(overrides)
    return EquipmentRequestCreate(**data)


def make_record(
    request_id: str = "REQ-0010325",
    token: Optional[str] = None,
    submitted_at: datetime = START,
    **overrides,
) -> RequestRecord:
    form = make_form()
    data = form.model_dump()
    data.update(
        request_id=request_id,
        submitted_at=submitted_at,
        approval_token=token or generate_token(),
        token_expires_at=submitted_at + timedelta(days=7),
    )
    data.update(overrides)
    return RequestRecord(**data)


def make_file_store(tmp_path) -> FileRequestStore:
    return FileRequestStore(tmp_path / "request-store.json", tmp_path / "request-counter.json")


def build_service(store, mailer=None, clock=None, approvers=(APPROVER,)) -> RequestService:
    notifications = NotificationService(
        mailer=mailer or FakeMailer(),
        pdf=PdfService(),
        base_url="https://requests.example.com",
        approver_emails=list(approvers),
    )
    return RequestService(store=store, notifications=notifications, clock=clock or FixedClock())


def _png_chunk(kind: bytes, body: bytes) -> bytes:
    return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body) & 0xFFFFFFFF)


def make_png(width: int, height: int, rows: list[bytes], color_type: int = 6, palette: bytes = b"", transparency: bytes = b"") -> bytes:
    """Build an 8-bit PNG; each row is its filter byte followed by the filtered scanline."""
    header = struct.pack(">IIBBBBB", width, height, 8, color_type, 0, 0, 0)
    chunks = [_png_chunk(b"IHDR", header)]
    if palette:
        chunks.append(_png_chunk(b"PLTE", palette))
    if transparency:
        chunks.append(_png_chunk(b"tRNS", transparency))
    chunks.append(_png_chunk(b"IDAT", zlib.compress(b"".join(rows))))
    chunks.append(_png_chunk(b"IEND", b""))
    return b"\x89PNG\r\n\x1a\n" + b"".join(chunks)


def png_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
