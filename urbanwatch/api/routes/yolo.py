"""
CCTV detection API endpoints.

Detectors post flagged frames here with their shared API key. Operators
read false alarm statistics for the monitoring dashboard.
"""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, Response, UploadFile, status

from urbanwatch.api.deps import DB, Classifier, CurrentOperator, DeviceKey, Publisher, Storage
from urbanwatch.api.schemas import (
    ApiResponse,
    DetectionResponse,
    FalseAlarmCounts,
    FalseAlarmDevice,
    FalseAlarmItem,
    FalseAlarmPeakHour,
    FalseAlarmStatsResponse,
)
from urbanwatch.config import get_logger
from urbanwatch.db.models import utcnow
from urbanwatch.db.queries import get_false_alarm_stats
from urbanwatch.services.ingestion import DetectionResult, ingest_detection

router = APIRouter()
logger = get_logger(__name__)


def _build_detection_response(
    result: DetectionResult,
    device_name: str,
    location_name: str | None,
) -> DetectionResponse:
    verdict = result.verdict
    if result.false_alarm:
        return DetectionResponse(
            false_alarm=True,
            false_alarm_id=result.record_id,
            device_name=device_name,
            location_name=location_name,
            confidence=verdict.confidence,
            reasoning=verdict.reasoning or "Not a real emergency",
        )

    accident = result.accident
    return DetectionResponse(
        false_alarm=False,
        accident_id=accident.id,
        media_id=result.media.id,
        accident_type=accident.accident_type,
        severity=accident.severity,
        title=accident.title,
        description=accident.description,
        latitude=accident.latitude,
        longitude=accident.longitude,
        image_url=result.media.original_path,
        device_name=device_name,
        location_name=location_name,
        confidence=verdict.confidence,
        reasoning=verdict.reasoning,
    )


@router.post(
    "/process-snapshot",
    response_model=ApiResponse[DetectionResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[DeviceKey],
)
async def process_snapshot(
    response: Response,
    db: DB,
    classifier: Classifier,
    storage: Storage,
    publisher: Publisher,
    snapshot: Annotated[UploadFile, File()],
    device_id: Annotated[str, Form()],
    detected_at: Annotated[datetime | None, Form()] = None,
) -> ApiResponse[DetectionResponse]:
    """
    Verify a detector snapshot.

    Answers 201 when the frame is a genuine emergency (stored as an
    accident) and 200 when it is a false alarm (the frame is discarded).
    """
    image_bytes = await snapshot.read()

    logger.info(
        "Detector snapshot received",
        device_id=device_id,
        detected_at=detected_at.isoformat() if detected_at else None,
        file_size=len(image_bytes),
    )

    result = await ingest_detection(
        db,
        image_bytes,
        device_id,
        detected_at,
        classifier=classifier,
        storage=storage,
        publisher=publisher,
        filename=snapshot.filename,
        mime_type=snapshot.content_type,
    )

    device = result.device
    data = _build_detection_response(result, device.device_name, device.location_name)

    if result.false_alarm:
        response.status_code = status.HTTP_200_OK
        return ApiResponse(
            message="Detection analyzed: False alarm (no emergency action needed)",
            data=data,
        )

    return ApiResponse(message="Emergency verified and saved successfully", data=data)


@router.get("/false-alarms/stats", response_model=ApiResponse[FalseAlarmStatsResponse])
async def false_alarm_stats(
    db: DB,
    operator: CurrentOperator,
    device_id: UUID | None = Query(None, alias="deviceId"),
) -> ApiResponse[FalseAlarmStatsResponse]:
    """
    False alarm counts for today, this week and this hour, the busiest
    hour today, a per-device breakdown and the latest entries.
    """
    stats = await get_false_alarm_stats(db, utcnow(), device_id=device_id)
    peak_hour = stats["peak_hour"]

    recent = [
        FalseAlarmItem(
            id=fa.id,
            device_name=fa.device.device_name if fa.device else "Unknown",
            location_name=fa.device.location_name if fa.device else None,
            attempted_accident_type=fa.attempted_accident_type,
            reasoning=fa.reasoning,
            confidence_score=fa.confidence_score,
            detected_objects=fa.detected_objects or [],
            detected_at=fa.detected_at,
        )
        for fa in stats["recent"]
    ]

    return ApiResponse(
        message="False alarm statistics retrieved successfully",
        data=FalseAlarmStatsResponse(
            statistics=FalseAlarmCounts(
                today=stats["today"],
                this_week=stats["this_week"],
                this_hour=stats["this_hour"],
                peak_hour=FalseAlarmPeakHour(**peak_hour) if peak_hour else None,
            ),
            device_breakdown=[FalseAlarmDevice(**item) for item in stats["device_breakdown"]],
            recent_false_alarms=recent,
        ),
    )
