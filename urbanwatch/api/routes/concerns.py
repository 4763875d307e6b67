"""
Citizen concern API endpoints.

Submission, listing, counting, detail and soft deletion of the
authenticated citizen's own concerns.
"""

import math
from collections.abc import Sequence
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, UploadFile, status

from urbanwatch.api.deps import DB, Assignment, CurrentCitizen, Publisher, Storage
from urbanwatch.api.schemas import (
    ApiResponse,
    ConcernCountResponse,
    ConcernDeletedResponse,
    ConcernListResponse,
    ConcernResponse,
    DistributionSummary,
    MediaResponse,
    PersonSummary,
    TimelineEntry,
)
from urbanwatch.config import get_logger
from urbanwatch.db.models import (
    Concern,
    ConcernCategory,
    ConcernDistribution,
    ConcernHistory,
    ConcernStatus,
    ConcernType,
    IncidentMedia,
    Severity,
    User,
)
from urbanwatch.services.concerns import (
    ConcernDraft,
    UploadedFile,
    count_concerns_for_citizen,
    create_concern,
    delete_citizen_concern,
    get_citizen_concern_detail,
    list_concerns_for_citizen,
)
from urbanwatch.services.notifications import SYSTEM_ACTOR_NAME

router = APIRouter()
logger = get_logger(__name__)


def _person(user: User | None, fallback: str) -> PersonSummary:
    if user is None:
        return PersonSummary(name=fallback)
    return PersonSummary(id=user.id, name=user.name)


def _build_timeline(histories: Sequence[ConcernHistory]) -> list[TimelineEntry]:
    """History entries oldest first; entries without an actor are system actions."""
    return [
        TimelineEntry(
            id=h.id,
            status=h.status,
            previous_status=h.previous_status,
            remarks=h.remarks,
            acted_by=_person(h.actor if h.acted_by else None, SYSTEM_ACTOR_NAME),
            created_at=h.created_at,
        )
        for h in histories
    ]


def _build_distribution(
    distribution: ConcernDistribution | None,
    purok_leader: User | None,
) -> DistributionSummary | None:
    if distribution is None:
        return None
    return DistributionSummary(
        id=distribution.id,
        status=distribution.status,
        assigned_at=distribution.assigned_at,
        acknowledged_at=distribution.acknowledged_at,
        purok_leader=_person(purok_leader, "Purok Leader") if purok_leader else None,
    )


def build_concern_response(
    concern: Concern,
    media: Sequence[IncidentMedia],
    distribution: ConcernDistribution | None,
    purok_leader: User | None,
    histories: Sequence[ConcernHistory],
) -> ConcernResponse:
    """Build a ConcernResponse from a concern and its related records."""
    return ConcernResponse(
        id=concern.id,
        tracking_code=concern.tracking_code,
        type=concern.type,
        title=concern.title,
        description=concern.description,
        category=concern.category,
        severity=concern.severity,
        status=concern.status,
        latitude=concern.latitude,
        longitude=concern.longitude,
        address=concern.address,
        custom_location=concern.custom_location,
        transcript_text=concern.transcript_text,
        citizen_id=concern.citizen_id,
        created_at=concern.created_at,
        updated_at=concern.updated_at,
        images=[m.original_path for m in media],
        media=[MediaResponse.model_validate(m) for m in media],
        distribution=_build_distribution(distribution, purok_leader),
        timeline=_build_timeline(histories),
    )


def _build_loaded_concern(concern: Concern, media: Sequence[IncidentMedia]) -> ConcernResponse:
    """For concerns whose distribution and histories were eager loaded."""
    distribution = concern.distribution
    return build_concern_response(
        concern,
        media,
        distribution,
        distribution.purok_leader if distribution else None,
        concern.histories,
    )


@router.post(
    "",
    response_model=ApiResponse[ConcernResponse],
    status_code=status.HTTP_201_CREATED,
)
async def submit_concern(
    db: DB,
    citizen: CurrentCitizen,
    storage: Storage,
    assignment: Assignment,
    publisher: Publisher,
    category: Annotated[ConcernCategory, Form()],
    concern_type: Annotated[ConcernType, Form(alias="type")] = ConcernType.manual,
    title: Annotated[str | None, Form(max_length=100)] = None,
    description: Annotated[str | None, Form()] = None,
    severity: Annotated[Severity | None, Form()] = None,
    transcript_text: Annotated[str | None, Form()] = None,
    latitude: Annotated[float | None, Form(ge=-90, le=90)] = None,
    longitude: Annotated[float | None, Form(ge=-180, le=180)] = None,
    address: Annotated[str | None, Form(max_length=255)] = None,
    custom_location: Annotated[str | None, Form(max_length=255)] = None,
    files: Annotated[list[UploadFile] | None, File()] = None,
) -> ApiResponse[ConcernResponse]:
    """
    Submit a new concern (manual or voice) with optional media.

    The concern is distributed to a purok leader immediately.
    """
    uploads = [
        UploadedFile(
            data=await f.read(),
            filename=f.filename,
            content_type=f.content_type,
        )
        for f in files or []
    ]

    submitted = await create_concern(
        db,
        ConcernDraft(
            type=concern_type,
            category=category,
            title=title,
            description=description,
            severity=severity,
            transcript_text=transcript_text,
            latitude=latitude,
            longitude=longitude,
            address=address,
            custom_location=custom_location,
        ),
        citizen.id,
        uploads,
        storage=storage,
        assignment=assignment,
        publisher=publisher,
    )

    return ApiResponse(
        message="Concern submitted successfully!",
        data=build_concern_response(
            submitted.concern,
            submitted.media,
            submitted.distribution,
            submitted.purok_leader,
            [submitted.history],
        ),
    )


@router.get("", response_model=ApiResponse[ConcernListResponse])
async def list_concerns(
    db: DB,
    citizen: CurrentCitizen,
    status: ConcernStatus | None = None,
    category: ConcernCategory | None = None,
    severity: Severity | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(15, ge=1, le=100, alias="pageSize"),
) -> ApiResponse[ConcernListResponse]:
    """List the citizen's own concerns, newest first."""
    details, total = await list_concerns_for_citizen(
        db,
        citizen.id,
        status=status,
        category=category,
        severity=severity,
        page=page,
        page_size=page_size,
    )

    logger.info("Listed citizen concerns", citizen_id=str(citizen.id), total=total, page=page)

    return ApiResponse(
        message="Concerns retrieved successfully",
        data=ConcernListResponse(
            items=[_build_loaded_concern(d.concern, d.media) for d in details],
            total=total,
            page=page,
            page_size=page_size,
            pages=math.ceil(total / page_size) if total > 0 else 0,
        ),
    )


@router.get("/count", response_model=ApiResponse[ConcernCountResponse])
async def count_concerns(
    db: DB,
    citizen: CurrentCitizen,
    status: ConcernStatus | None = None,
    category: ConcernCategory | None = None,
    severity: Severity | None = None,
) -> ApiResponse[ConcernCountResponse]:
    """Count the citizen's own concerns with the list filters applied."""
    count = await count_concerns_for_citizen(
        db,
        citizen.id,
        status=status,
        category=category,
        severity=severity,
    )
    return ApiResponse(
        message="Concern count retrieved successfully",
        data=ConcernCountResponse(count=count),
    )


@router.get("/{concern_id}", response_model=ApiResponse[ConcernResponse])
async def get_concern(
    concern_id: UUID,
    db: DB,
    citizen: CurrentCitizen,
) -> ApiResponse[ConcernResponse]:
    """Get one of the citizen's own concerns with media, distribution and timeline."""
    detail = await get_citizen_concern_detail(db, concern_id, citizen.id)
    return ApiResponse(
        message="Concern retrieved successfully",
        data=_build_loaded_concern(detail.concern, detail.media),
    )


@router.delete("/{concern_id}", response_model=ApiResponse[ConcernDeletedResponse])
async def delete_concern(
    concern_id: UUID,
    db: DB,
    citizen: CurrentCitizen,
) -> ApiResponse[ConcernDeletedResponse]:
    """Soft-delete one of the citizen's own concerns."""
    await delete_citizen_concern(db, concern_id, citizen.id)
    return ApiResponse(
        message="Concern deleted successfully",
        data=ConcernDeletedResponse(concern_id=concern_id),
    )
