from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from app.models.equipment_request import DecisionCreate, EquipmentRequestCreate, RequestRecord
from app.services.request_service import RequestService


router = APIRouter(prefix="/requests", tags=["requests"])

EMAIL_MESSAGES = {
    "queued": "Request saved. Notification emails are being sent.",
    "sent": "Request saved and emails sent successfully.",
    "failed": "Request saved successfully, but email notification failed. The approval link will still work.",
}


def get_request_service(request: Request) -> RequestService:
    return request.app.state.request_service


def _serialize_record(record: RequestRecord) -> dict[str, Any]:
    return {
        "request_id": record.request_id,
        "status": record.approval_status.value,
        "requester_name": record.requester_name,
        "requester_email": record.requester_email,
        "submitted_at": record.submitted_at,
        "token_expires_at": record.token_expires_at,
        "approved_by": record.approved_by,
        "approval_date": record.approval_date,
        "approval_comments": record.approval_comments,
    }


@router.post("", status_code=201)
async def submit_request(
    payload: EquipmentRequestCreate,
    background_tasks: BackgroundTasks,
    service: RequestService = Depends(get_request_service),
):
    result = await service.submit_request(payload, background_tasks=background_tasks)
    return {
        "success": True,
        **_serialize_record(result.record),
        "email_status": result.email_status,
        "email_error": result.email_error,
        "message": EMAIL_MESSAGES[result.email_status],
    }


@router.get("/{request_id}/status")
async def get_request_status(
    request_id: str,
    service: RequestService = Depends(get_request_service),
):
    status = await service.get_status(request_id)
    return status.model_dump(mode="json")


@router.get("/{request_id}/verify-token")
async def verify_token(
    request_id: str,
    token: Optional[str] = None,
    service: RequestService = Depends(get_request_service),
):
    record = await service.verify_token(request_id, token)
    return {
        "valid": True,
        "request_id": record.request_id,
        "requester_name": record.requester_name,
        "token_expires_at": record.token_expires_at,
    }


@router.post("/{request_id}/decision")
async def decide_request(
    request_id: str,
    payload: DecisionCreate,
    background_tasks: BackgroundTasks,
    service: RequestService = Depends(get_request_service),
):
    outcome = await service.decide_request(request_id, payload, background_tasks=background_tasks)
    return {
        "success": True,
        **_serialize_record(outcome.record),
        "email_status": outcome.email_status,
        "email_error": outcome.email_error,
    }


@router.get("/{request_id}/pdf")
async def download_request_pdf(
    request_id: str,
    service: RequestService = Depends(get_request_service),
):
    content = await service.render_pdf(request_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="equipment-request-{request_id}.pdf"'},
    )
