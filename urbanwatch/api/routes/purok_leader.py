"""
Purok leader API endpoints.

Purok leaders see and triage the concerns distributed to them.
Operators may use the same endpoints to act on any distribution.
"""

import math
from uuid import UUID

from fastapi import APIRouter, Query

from urbanwatch.api.deps import DB, PurokLeaderActor, Publisher
from urbanwatch.api.schemas import (
    ApiResponse,
    AssignedConcernListResponse,
    AssignedConcernResponse,
    PersonSummary,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from urbanwatch.config import get_logger
from urbanwatch.db.models import DistributionStatus, MediaType
from urbanwatch.services.concerns import (
    AssignedConcern,
    get_assigned_concern,
    list_assigned_concerns,
)
from urbanwatch.services.transitions import apply_transition

router = APIRouter()
logger = get_logger(__name__)


def _build_assigned_response(item: AssignedConcern) -> AssignedConcernResponse:
    """Build an AssignedConcernResponse from a distribution and its concern."""
    concern = item.concern
    citizen = concern.citizen
    audio = next((m.original_path for m in item.media if m.media_type == MediaType.audio), None)

    return AssignedConcernResponse(
        id=concern.id,
        distribution_id=item.distribution.id,
        tracking_code=concern.tracking_code,
        title=concern.title,
        description=concern.description,
        category=concern.category,
        severity=concern.severity,
        status=concern.status,
        distribution_status=item.distribution.status,
        latitude=concern.latitude,
        longitude=concern.longitude,
        address=concern.address,
        custom_location=concern.custom_location,
        images=[m.original_path for m in item.media if m.media_type == MediaType.image],
        audio=audio,
        transcript=concern.transcript_text,
        citizen=(
            PersonSummary(id=citizen.id, name=citizen.name)
            if citizen
            else PersonSummary(name="Anonymous")
        ),
        citizen_phone=citizen.phone if citizen else None,
        assigned_at=item.distribution.assigned_at,
        acknowledged_at=item.distribution.acknowledged_at,
        created_at=concern.created_at,
        updated_at=concern.updated_at,
    )


@router.get("/concerns", response_model=ApiResponse[AssignedConcernListResponse])
async def list_concerns(
    db: DB,
    actor: PurokLeaderActor,
    status: DistributionStatus | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(15, ge=1, le=100, alias="pageSize"),
) -> ApiResponse[AssignedConcernListResponse]:
    """List concerns distributed to the authenticated purok leader."""
    items, total = await list_assigned_concerns(
        db,
        actor.id,
        status=status,
        page=page,
        page_size=page_size,
    )

    logger.info("Listed assigned concerns", purok_leader_id=str(actor.id), total=total)

    return ApiResponse(
        message="Assigned concerns retrieved successfully",
        data=AssignedConcernListResponse(
            items=[_build_assigned_response(item) for item in items],
            total=total,
            page=page,
            page_size=page_size,
            pages=math.ceil(total / page_size) if total > 0 else 0,
        ),
    )


@router.get("/concerns/{concern_id}", response_model=ApiResponse[AssignedConcernResponse])
async def get_concern(
    concern_id: UUID,
    db: DB,
    actor: PurokLeaderActor,
) -> ApiResponse[AssignedConcernResponse]:
    """Get a concern distributed to the authenticated purok leader."""
    item = await get_assigned_concern(db, concern_id, actor.id)
    return ApiResponse(
        message="Concern details retrieved successfully",
        data=_build_assigned_response(item),
    )


@router.put("/concerns/{concern_id}/status", response_model=ApiResponse[StatusUpdateResponse])
async def update_concern_status(
    concern_id: UUID,
    request: StatusUpdateRequest,
    db: DB,
    actor: PurokLeaderActor,
    publisher: Publisher,
) -> ApiResponse[StatusUpdateResponse]:
    """
    Change a concern's status.

    The concern and its distribution move together and a history entry
    is recorded. Concerns not assigned to the caller answer 404.
    """
    result = await apply_transition(
        db,
        concern_id,
        request.status,
        actor,
        request.remarks,
        publisher=publisher,
    )

    return ApiResponse(
        message="Concern status updated successfully",
        data=StatusUpdateResponse(
            concern_id=concern_id,
            previous_status=result.previous_status,
            new_status=result.new_status,
        ),
    )
