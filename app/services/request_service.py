import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from fastapi import BackgroundTasks
from starlette.concurrency import run_in_threadpool

from app.core.approval_tokens import generate_token, token_expiry
from app.core.config import Settings
from app.core.exceptions import InvalidRequestError, RequestNotFoundError
from app.db.request_store import RequestStore
from app.models.equipment_request import (
    ApprovalStatus,
    DecisionCreate,
    EquipmentItem,
    EquipmentRequestCreate,
    RequestRecord,
    RequestStatusRead,
)
from app.services.approval_service import ApprovalService, utcnow
from app.services.mail_service import MailService
from app.services.notification_service import DeliveryReport, NotificationService
from app.services.pdf_service import pdf_service


logger = logging.getLogger(__name__)

NotificationJob = Callable[[RequestRecord], DeliveryReport]


@dataclass(frozen=True)
class SubmissionResult:
    record: RequestRecord
    email_status: str
    email_error: Optional[str] = None


@dataclass(frozen=True)
class DecisionOutcome:
    record: RequestRecord
    status: ApprovalStatus
    email_status: str
    email_error: Optional[str] = None


def format_request_id(sequence: int, issued_at: datetime) -> str:
    return f"REQ-{sequence:03d}{issued_at:%m}{issued_at:%y}"


class RequestService:
    """Entry points for submitting and deciding equipment requests.

    Every state change is durable in the store before any notification is
    attempted; notifications never fail the operation that triggered them.
    """

    def __init__(
        self,
        store: RequestStore,
        notifications: NotificationService,
        approvals: Optional[ApprovalService] = None,
        token_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifications = notifications
        self.approvals = approvals or ApprovalService(store, clock=clock)
        self.token_ttl = token_ttl
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, store: RequestStore) -> "RequestService":
        notifications = NotificationService(
            mailer=MailService.from_settings(settings),
            pdf=pdf_service,
            base_url=settings.BASE_URL,
            approver_emails=settings.APPROVER_EMAILS,
            notify_requester_on_submit=settings.NOTIFY_REQUESTER_ON_SUBMIT,
        )
        return cls(
            store=store,
            notifications=notifications,
            token_ttl=timedelta(days=settings.APPROVAL_TOKEN_TTL_DAYS),
        )

    def _clean_items(self, items: list[EquipmentItem]) -> list[EquipmentItem]:
        cleaned: list[EquipmentItem] = []
        for item in items:
            name = item.name.strip()
            has_details = any(value.strip() for value in (item.quantity, item.purpose, item.required_date))
            if not name:
                if has_details:
                    raise InvalidRequestError("Equipment description is required for all items")
                continue
            cleaned.append(
                EquipmentItem(
                    name=name,
                    quantity=item.quantity.strip(),
                    purpose=item.purpose.strip(),
                    required_date=item.required_date.strip(),
                )
            )
        if not cleaned:
            raise InvalidRequestError("At least one equipment item is required")
        return cleaned

    def validate_form(self, form: EquipmentRequestCreate) -> EquipmentRequestCreate:
        requester_name = form.requester_name.strip()
        requester_email = form.requester_email.strip()
        if not requester_name or not requester_email:
            raise InvalidRequestError("requester_name and requester_email are required")
        if "@" not in requester_email:
            raise InvalidRequestError("requester_email is not a valid email address")

        signature = form.signature.strip()
        if not signature:
            raise InvalidRequestError("A requester signature is required")

        today = self.clock().date().isoformat()
        return form.model_copy(
            update={
                "requester_name": requester_name,
                "requester_email": requester_email,
                "requester_position": form.requester_position.strip(),
                "company_name": form.company_name.strip(),
                "project_site_name": form.project_site_name.strip(),
                "department": form.department.strip(),
                "date_of_request": form.date_of_request.strip() or today,
                "requester_date": form.requester_date.strip() or today,
                "equipment_items": self._clean_items(form.equipment_items),
                "signature": signature,
            }
        )

    def _run_notification(self, job: NotificationJob, record: RequestRecord) -> Optional[DeliveryReport]:
        try:
            return job(record)
        except Exception:
            logger.exception("Notification for %s failed unexpectedly", record.request_id)
            return None

    async def _dispatch(
        self,
        job: NotificationJob,
        record: RequestRecord,
        background_tasks: Optional[BackgroundTasks],
    ) -> tuple[str, Optional[str]]:
        if background_tasks is not None:
            background_tasks.add_task(self._run_notification, job, record)
            return "queued", None

        report = await run_in_threadpool(self._run_notification, job, record)
        if report is None:
            return "failed", "Notification failed unexpectedly"
        if report.sent:
            return "sent", None
        return "failed", report.error

    def _create_record(self, cleaned: EquipmentRequestCreate) -> RequestRecord:
        sequence = self.store.next_sequence_number()
        submitted_at = self.clock()
        request_id = format_request_id(sequence, submitted_at)
        record = RequestRecord(
            **cleaned.model_dump(),
            request_id=request_id,
            submitted_at=submitted_at,
            approval_token=generate_token(),
            token_expires_at=token_expiry(submitted_at, self.token_ttl),
            token_used=False,
            approval_status=ApprovalStatus.PENDING,
        )
        self.store.put(request_id, record)
        return record

    async def submit_request(
        self,
        form: EquipmentRequestCreate,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> SubmissionResult:
        cleaned = self.validate_form(form)

        # Store calls block on disk or database I/O.
        record = await run_in_threadpool(self._create_record, cleaned)
        logger.info("Request submitted: request_id=%s requester=%s", record.request_id, record.requester_email)

        email_status, email_error = await self._dispatch(
            self.notifications.send_submission_notices,
            record,
            background_tasks,
        )
        return SubmissionResult(record=record, email_status=email_status, email_error=email_error)

    async def decide_request(
        self,
        request_id: str,
        decision: DecisionCreate,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> DecisionOutcome:
        result = await run_in_threadpool(
            self.approvals.decide,
            request_id,
            decision.token,
            decision.action,
            decision.approver_name,
            comments=decision.comments,
            signature=decision.signature,
            signature_type=decision.signature_type,
            decision_date=decision.approval_date,
        )

        email_status, email_error = await self._dispatch(
            self.notifications.send_decision_notice,
            result.record,
            background_tasks,
        )
        return DecisionOutcome(
            record=result.record,
            status=result.status,
            email_status=email_status,
            email_error=email_error,
        )

    async def verify_token(self, request_id: str, token: Optional[str]) -> RequestRecord:
        return await run_in_threadpool(self.approvals.check_token, request_id, token)

    def _require_record(self, request_id: str) -> RequestRecord:
        record = self.store.get(request_id)
        if record is None:
            raise RequestNotFoundError(request_id)
        return record

    async def get_status(self, request_id: str) -> RequestStatusRead:
        record = await run_in_threadpool(self._require_record, request_id)
        return RequestStatusRead(
            request_id=record.request_id,
            status=record.approval_status,
            approved_by=record.approved_by,
            approval_date=record.approval_date,
            approval_comments=record.approval_comments,
        )

    async def render_pdf(self, request_id: str) -> bytes:
        record = await run_in_threadpool(self._require_record, request_id)
        return await run_in_threadpool(self.notifications.pdf.render_request_pdf, record)
