"""Dispute API router for parties and the moderators acting on a dispute."""

import json
import uuid

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Query,
    Request,
    Response,
    UploadFile,
)
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import get_db
from marketplace.exceptions import ValidationException
from marketplace.models.enums import DisputeContext, DisputeStatus, ReasonCategory
from marketplace.modules.auth.auth import AuthenticatedUser, get_current_user
from marketplace.modules.dispute.moderation_service import ModerationService
from marketplace.modules.dispute.schemas import (
    DisputeActionResponse,
    DisputeCreate,
    DisputeDetailResponse,
    DisputeListResponse,
    DisputeMessageResponse,
    DisputeResponse,
    EscalateRequest,
    MessageCreate,
    ProposalDecisionRequest,
    ProposalRequest,
    ReasonResponse,
    RequestInfoRequest,
)
from marketplace.modules.dispute.service import DisputeService
from marketplace.modules.notifications.realtime import RealtimeBroadcaster, get_broadcaster
from marketplace.modules.storage.service import AttachmentUpload, S3FileStorage, get_file_storage
from marketplace.ratelimit import limiter

router = APIRouter(prefix="/disputes", tags=["disputes"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_form_payload(raw: str | None, model: type[BaseModel]) -> BaseModel:
    """Validate the JSON string sent in the ``data``/``payload`` form field."""
    try:
        content = json.loads(raw) if raw else {}
    except ValueError as exc:
        raise ValidationException("Form field 'data' must be a JSON object") from exc
    if not isinstance(content, dict):
        raise ValidationException("Form field 'data' must be a JSON object")
    try:
        return model.model_validate(content)
    except ValidationError as exc:
        raise ValidationException(
            "Validation failed",
            details=[
                {
                    "field": ".".join(str(loc) for loc in err.get("loc", [])) or None,
                    "message": err.get("msg", ""),
                }
                for err in exc.errors()
            ],
        ) from exc


async def read_uploads(files: list[UploadFile] | None) -> list[AttachmentUpload]:
    uploads = []
    for upload in files or []:
        if not upload.filename:
            continue
        uploads.append(
            AttachmentUpload(
                filename=upload.filename,
                content_type=upload.content_type or "application/octet-stream",
                data=await upload.read(),
            )
        )
    return uploads


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


async def commit_and_publish(
    db: AsyncSession,
    svc: DisputeService,
    background_tasks: BackgroundTasks,
    broadcaster: RealtimeBroadcaster,
) -> None:
    """Commit now so real-time events never describe uncommitted state."""
    await db.commit()
    background_tasks.add_task(broadcaster.publish, svc.realtime)


def action_response(dispute, message=None, changed: bool = True) -> DisputeActionResponse:
    return DisputeActionResponse(
        dispute=DisputeResponse.model_validate(dispute),
        message=DisputeMessageResponse.model_validate(message) if message is not None else None,
        changed=changed,
    )


# ---------------------------------------------------------------------------
# Reasons
# ---------------------------------------------------------------------------


@router.get("/reasons", response_model=list[ReasonResponse])
async def list_reasons(
    category: ReasonCategory = Query(ReasonCategory.PURCHASES, alias="categoria"),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Active reason codes for a category, with built-in defaults."""
    return await DisputeService(db).list_reasons(category)


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


@router.post("/", response_model=DisputeResponse, status_code=201)
@limiter.limit("10/minute")
async def create_dispute(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    data: str | None = Form(None),
    payload: str | None = Form(None),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
):
    """Open a dispute; an existing one for the same subject is returned with 200."""
    if not (data or payload):
        raise ValidationException("Missing form field 'data'")
    body = parse_form_payload(data or payload, DisputeCreate)
    svc = DisputeService(db)
    dispute, created = await svc.create_dispute(body, user)
    if not created:
        response.status_code = 200
    await commit_and_publish(db, svc, background_tasks, broadcaster)
    return DisputeResponse.model_validate(dispute)


@router.get("/", response_model=DisputeListResponse)
async def list_my_disputes(
    context: DisputeContext | None = Query(None),
    status: DisputeStatus | None = Query(None),
    order_id: uuid.UUID | None = Query(None, alias="orderId"),
    campaign_id: uuid.UUID | None = Query(None, alias="campaignId"),
    application_id: uuid.UUID | None = Query(None, alias="applicationId"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Disputes where the caller is buyer or seller."""
    items, total = await DisputeService(db).list_my_disputes(
        user_id=user.id,
        context=context,
        status=status,
        order_id=order_id,
        campaign_id=campaign_id,
        application_id=application_id,
        limit=limit,
        offset=offset,
    )
    return DisputeListResponse(
        items=[DisputeResponse.model_validate(d) for d in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{dispute_id}", response_model=DisputeDetailResponse)
async def get_dispute(
    dispute_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await DisputeService(db).get_detail(dispute_id, user)


@router.post("/{dispute_id}/messages", response_model=DisputeMessageResponse, status_code=201)
@limiter.limit("30/minute")
async def add_message(
    request: Request,
    dispute_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    data: str | None = Form(None),
    payload: str | None = Form(None),
    files: list[UploadFile] | None = File(None),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
    storage: S3FileStorage = Depends(get_file_storage),
):
    """Append to the thread; at most three files are kept."""
    body = parse_form_payload(data or payload, MessageCreate)
    svc = DisputeService(db)
    message = await svc.add_message(
        dispute_id, user, body.text, await read_uploads(files), storage
    )
    await commit_and_publish(db, svc, background_tasks, broadcaster)
    return DisputeMessageResponse.model_validate(message)


# ---------------------------------------------------------------------------
# Moderation actions
# ---------------------------------------------------------------------------


@router.post("/{dispute_id}/request-info", response_model=DisputeActionResponse)
@limiter.limit("30/minute")
async def request_info(
    request: Request,
    dispute_id: uuid.UUID,
    body: RequestInfoRequest,
    background_tasks: BackgroundTasks,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
):
    svc = ModerationService(db)
    dispute, message = await svc.request_info(dispute_id, user, body.to, body.text)
    await commit_and_publish(db, svc, background_tasks, broadcaster)
    return action_response(dispute, message)


@router.post("/{dispute_id}/proposal", response_model=DisputeActionResponse)
@limiter.limit("30/minute")
async def propose_resolution(
    request: Request,
    dispute_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    body: ProposalRequest | None = None,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
):
    svc = ModerationService(db)
    dispute, message = await svc.propose_resolution(dispute_id, user, body.text if body else None)
    await commit_and_publish(db, svc, background_tasks, broadcaster)
    return action_response(dispute, message)


@router.post("/{dispute_id}/proposal/decision", response_model=DisputeActionResponse)
@limiter.limit("30/minute")
async def decide_proposal(
    request: Request,
    dispute_id: uuid.UUID,
    body: ProposalDecisionRequest,
    background_tasks: BackgroundTasks,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
):
    """Accept or reject the open proposal; repeating a decision changes nothing."""
    svc = ModerationService(db)
    dispute, message, changed = await svc.decide_proposal(
        dispute_id, user, body.decision, body.party
    )
    if changed:
        await commit_and_publish(db, svc, background_tasks, broadcaster)
    return action_response(dispute, message, changed)


@router.post("/{dispute_id}/mediation", response_model=DisputeActionResponse)
@limiter.limit("10/minute")
async def request_mediation(
    request: Request,
    dispute_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
):
    svc = ModerationService(db)
    dispute, message = await svc.request_mediation(dispute_id, user)
    await commit_and_publish(db, svc, background_tasks, broadcaster)
    return action_response(dispute, message)


@router.post("/{dispute_id}/escalate", response_model=DisputeActionResponse)
@limiter.limit("10/minute")
async def escalate_dispute(
    request: Request,
    dispute_id: uuid.UUID,
    body: EscalateRequest,
    background_tasks: BackgroundTasks,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broadcaster: RealtimeBroadcaster = Depends(get_broadcaster),
):
    svc = ModerationService(db)
    dispute, message = await svc.escalate(dispute_id, user, body.reason, ip=client_ip(request))
    await commit_and_publish(db, svc, background_tasks, broadcaster)
    return action_response(dispute, message)
