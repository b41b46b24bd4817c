import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from app.core.approval_tokens import validate_token
from app.core.exceptions import ApprovalTokenError, InvalidRequestError
from app.db.request_store import RequestStore
from app.models.equipment_request import (
    ApprovalStatus,
    Decision,
    DecisionAction,
    RequestRecord,
    SignatureType,
    TokenOutcome,
)


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DecisionResult:
    record: RequestRecord
    status: ApprovalStatus


class ApprovalService:
    """Moves a request from pending to approved or rejected, once.

    The token check and the decision write share one validation path, so a
    token that passes ``verify`` is exactly the token ``decide`` accepts at
    the same instant.
    """

    def __init__(self, store: RequestStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def _normalize_action(self, action: Optional[str]) -> DecisionAction:
        raw = (action or "").strip().lower()
        try:
            return DecisionAction(raw)
        except ValueError:
            raise InvalidRequestError(f"Unsupported action: {action!r}; expected 'approve' or 'reject'")

    def check_token(self, request_id: Optional[str], token: Optional[str]) -> RequestRecord:
        record = self.store.get(request_id) if request_id else None
        outcome = validate_token(record, token, self.clock())
        if outcome != TokenOutcome.VALID:
            logger.info("Approval token rejected for request_id=%s: %s", request_id, outcome.value)
            raise ApprovalTokenError(outcome)
        return record

    def verify(self, request_id: Optional[str], token: Optional[str]) -> TokenOutcome:
        try:
            self.check_token(request_id, token)
        except ApprovalTokenError as exc:
            return exc.outcome
        return TokenOutcome.VALID

    def build_decision(
        self,
        action: DecisionAction,
        approver_name: str,
        comments: Optional[str] = None,
        signature: Optional[str] = None,
        signature_type: Optional[SignatureType] = None,
        decision_date: Optional[str] = None,
    ) -> Decision:
        signature = (signature or "").strip() or None
        if signature and signature_type is None:
            signature_type = SignatureType.TYPED
        return Decision(
            status=action.status,
            approved_by=approver_name.strip(),
            approval_date=(decision_date or "").strip() or self.clock().date().isoformat(),
            approval_signature=signature,
            approval_signature_type=signature_type if signature else None,
            approval_comments=(comments or "").strip() or None,
        )

    def decide(
        self,
        request_id: str,
        token: Optional[str],
        action: Optional[str],
        approver_name: Optional[str],
        comments: Optional[str] = None,
        signature: Optional[str] = None,
        signature_type: Optional[SignatureType] = None,
        decision_date: Optional[str] = None,
    ) -> DecisionResult:
        decision_action = self._normalize_action(action)
        if not approver_name or not approver_name.strip():
            raise InvalidRequestError("approver_name is required")

        self.check_token(request_id, token)

        decision = self.build_decision(
            decision_action,
            approver_name,
            comments=comments,
            signature=signature,
            signature_type=signature_type,
            decision_date=decision_date,
        )
        updated = self.store.record_decision(request_id, token.strip(), decision)
        if updated is None:
            # Another decision consumed the token between the check and the write.
            self.check_token(request_id, token)
            raise ApprovalTokenError(TokenOutcome.USED)

        logger.info(
            "Request %s %s by %s",
            request_id,
            updated.approval_status.value,
            updated.approved_by,
        )
        return DecisionResult(record=updated, status=updated.approval_status)
