from app.models.equipment_request import (
    ApprovalStatus, SignatureType, DecisionAction, TokenOutcome,
    EquipmentItem, EquipmentRequestCreate, RequestRecord,
    Decision, DecisionCreate, RequestStatusRead,
    StoredRequest, RequestCounter,
)

__all__ = [
    "ApprovalStatus", "SignatureType", "DecisionAction", "TokenOutcome",
    "EquipmentItem", "EquipmentRequestCreate", "RequestRecord",
    "Decision", "DecisionCreate", "RequestStatusRead",
    "StoredRequest", "RequestCounter",
]
