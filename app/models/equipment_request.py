from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import field_validator
from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SignatureType(str, Enum):
    TYPED = "typed"
    DRAWN = "drawn"


class DecisionAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def status(self) -> ApprovalStatus:
        if self == DecisionAction.APPROVE:
            return ApprovalStatus.APPROVED
        return ApprovalStatus.REJECTED


class TokenOutcome(str, Enum):
    VALID = "valid"
    MISSING = "missing"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    USED = "used"
    EXPIRED = "expired"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EquipmentItem(SQLModel):
    name: str = ""
    quantity: str = ""
    purpose: str = ""
    required_date: str = ""


class EquipmentRequestCreate(SQLModel):
    requester_name: str = ""
    requester_email: str = ""
    requester_position: str = ""
    company_name: str = ""
    project_site_name: str = ""
    department: str = ""
    date_of_request: str = ""
    equipment_items: list[EquipmentItem] = Field(default_factory=list)
    signature: str = ""
    signature_type: SignatureType = SignatureType.TYPED
    requester_date: str = ""


class Decision(SQLModel):
    status: ApprovalStatus
    approved_by: str
    approval_date: str
    approval_signature: Optional[str] = None
    approval_signature_type: Optional[SignatureType] = None
    approval_comments: Optional[str] = None


class RequestRecord(EquipmentRequestCreate):
    request_id: str
    submitted_at: datetime

    approval_token: str
    token_expires_at: Optional[datetime] = None
    token_used: bool = False
    approval_status: ApprovalStatus = ApprovalStatus.PENDING

    approved_by: Optional[str] = None
    approval_signature: Optional[str] = None
    approval_signature_type: Optional[SignatureType] = None
    approval_date: Optional[str] = None
    approval_comments: Optional[str] = None

    @field_validator("submitted_at", "token_expires_at")
    @classmethod
    def _normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    def with_decision(self, decision: Decision) -> "RequestRecord":
        return self.model_copy(
            update={
                "token_used": True,
                "approval_status": decision.status,
                "approved_by": decision.approved_by,
                "approval_date": decision.approval_date,
                "approval_signature": decision.approval_signature,
                "approval_signature_type": decision.approval_signature_type,
                "approval_comments": decision.approval_comments,
            }
        )

    @property
    def is_decided(self) -> bool:
        return self.approval_status != ApprovalStatus.PENDING


class DecisionCreate(SQLModel):
    token: Optional[str] = None
    action: str = ""
    approver_name: str = ""
    comments: Optional[str] = None
    signature: Optional[str] = None
    signature_type: Optional[SignatureType] = None
    approval_date: Optional[str] = None


class RequestStatusRead(SQLModel):
    request_id: str
    status: ApprovalStatus
    approved_by: Optional[str] = None
    approval_date: Optional[str] = None
    approval_comments: Optional[str] = None


class StoredRequest(SQLModel, table=True):
    request_id: str = Field(primary_key=True)
    approval_token: str
    token_used: bool = Field(default=False, index=True)
    approval_status: str = Field(default=ApprovalStatus.PENDING.value, index=True)
    submitted_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    record_json: str = Field(sa_column=Column(Text, nullable=False))


class RequestCounter(SQLModel, table=True):
    name: str = Field(primary_key=True)
    value: int = Field(default=0)
