"""
Operator API endpoints.

Operators review accidents confirmed from CCTV detections and move them
through the response workflow. The active list feeds the live map.
"""

import math
from uuid import UUID

from fastapi import APIRouter, Query

from urbanwatch.api.deps import DB, CurrentOperator, Publisher
from urbanwatch.api.schemas import (
    AccidentListResponse,
    AccidentMarker,
    AccidentResponse,
    AccidentStatusUpdateRequest,
    AccidentStatusUpdateResponse,
    ApiResponse,
    MediaResponse,
)
from urbanwatch.config import get_logger
from urbanwatch.db.models import AccidentStatus, AccidentType
from urbanwatch.db.queries import list_active_accidents
from urbanwatch.services.accidents import (
    AccidentDetail,
    get_accident_detail,
    list_operator_accidents,
    update_accident_status,
)
from urbanwatch.services.auth import Actor

router = APIRouter()
logger = get_logger(__name__)


def _build_accident_response(detail: AccidentDetail) -> AccidentResponse:
    accident = detail.accident
    device = accident.device
    return AccidentResponse(
        id=accident.id,
        title=accident.title,
        description=accident.description,
        accident_type=accident.accident_type,
        severity=accident.severity,
        status=accident.status,
        latitude=accident.latitude,
        longitude=accident.longitude,
        occurred_at=accident.occurred_at,
        device_name=device.device_name if device else None,
        location_name=device.location_name if device else None,
        media=[MediaResponse.model_validate(m) for m in detail.media],
        created_at=accident.created_at,
        updated_at=accident.updated_at,
    )


@router.get("/accidents", response_model=ApiResponse[AccidentListResponse])
async def list_accidents(
    db: DB,
    operator: CurrentOperator,
    search: str | None = Query(None, max_length=255),
    accident_type: AccidentType | None = Query(None, alias="accidentType"),
    status: AccidentStatus | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100, alias="pageSize"),
) -> ApiResponse[AccidentListResponse]:
    """List accidents, newest first, with search and filters."""
    items, total = await list_operator_accidents(
        db,
        search=search,
        accident_type=accident_type,
        status=status,
        page=page,
        page_size=page_size,
    )

    return ApiResponse(
        message="Accidents retrieved successfully",
        data=AccidentListResponse(
            items=[_build_accident_response(item) for item in items],
            total=total,
            page=page,
            page_size=page_size,
            pages=math.ceil(total / page_size) if total > 0 else 0,
        ),
    )


@router.get("/accidents/active", response_model=ApiResponse[list[AccidentMarker]])
async def active_accidents(
    db: DB,
    operator: CurrentOperator,
) -> ApiResponse[list[AccidentMarker]]:
    """Markers for accidents currently being responded to."""
    accidents = await list_active_accidents(db)
    logger.info("Listed active accidents", count=len(accidents))
    return ApiResponse(
        message="Active accidents retrieved successfully",
        data=[AccidentMarker.model_validate(accident) for accident in accidents],
    )


@router.get("/accidents/{accident_id}", response_model=ApiResponse[AccidentResponse])
async def get_accident(
    accident_id: UUID,
    db: DB,
    operator: CurrentOperator,
) -> ApiResponse[AccidentResponse]:
    detail = await get_accident_detail(db, accident_id)
    return ApiResponse(
        message="Accident retrieved successfully",
        data=_build_accident_response(detail),
    )


@router.put(
    "/accidents/{accident_id}/status",
    response_model=ApiResponse[AccidentStatusUpdateResponse],
)
async def update_status(
    accident_id: UUID,
    request: AccidentStatusUpdateRequest,
    db: DB,
    operator: CurrentOperator,
    publisher: Publisher,
) -> ApiResponse[AccidentStatusUpdateResponse]:
    """Change an accident's response status and broadcast it to the live map."""
    change = await update_accident_status(
        db,
        accident_id,
        request.status,
        Actor.from_user(operator),
        publisher=publisher,
    )

    return ApiResponse(
        message="Accident status updated successfully",
        data=AccidentStatusUpdateResponse(
            accident_id=accident_id,
            previous_status=change.previous_status,
            new_status=change.new_status,
        ),
    )
