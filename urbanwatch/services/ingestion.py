"""
Detection ingestion for CCTV snapshots.

A detector submits a frame and its device ID. The frame is verified;
a genuine emergency becomes an Accident with the frame attached as
IncidentMedia, anything else is logged as a FalseAlarm and the frame is
discarded. No distribution is created here and the transition engine is
not involved.

Repeated submissions of the same event are not deduplicated.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from urbanwatch.config import get_logger, get_settings
from urbanwatch.db.models import (
    Accident,
    AccidentStatus,
    CctvDevice,
    FalseAlarm,
    IncidentMedia,
    MediaCategory,
    MediaSourceType,
    MediaType,
    Severity,
    utcnow,
)
from urbanwatch.db.queries import get_device_by_id
from urbanwatch.errors import PersistenceError, ValidationError
from urbanwatch.services.classifier import EmergencyClassifier, SnapshotVerdict
from urbanwatch.services.events import (
    AccidentDetected,
    EventPublisher,
    FalseAlarmDetected,
    accident_snapshot,
    false_alarm_snapshot,
    media_snapshot,
    publish_safely,
)
from urbanwatch.services.storage import LocalMediaStorage

logger = get_logger(__name__)

DETECTION_FOLDER = "cctv-detections"


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one ingested snapshot."""

    record_id: UUID
    false_alarm: bool
    verdict: SnapshotVerdict
    device: CctvDevice
    accident: Accident | None = None
    media: IncidentMedia | None = None
    false_alarm_record: FalseAlarm | None = None


def validate_snapshot(
    image_bytes: bytes | None,
    mime_type: str | None,
    max_bytes: int,
) -> None:
    """
    Check that a snapshot is a non-empty image within the size limit.

    Raises:
        ValidationError: On a missing, non-image or oversized file.
    """
    if not image_bytes:
        raise ValidationError("The snapshot field is required.", field="snapshot")
    if not mime_type or not mime_type.startswith("image/"):
        raise ValidationError("The snapshot must be an image.", field="snapshot")
    if len(image_bytes) > max_bytes:
        raise ValidationError(
            f"The snapshot must not be greater than {max_bytes // 1024} kilobytes.",
            field="snapshot",
        )


def _parse_device_id(device_id: UUID | str) -> UUID:
    if isinstance(device_id, UUID):
        return device_id
    try:
        return UUID(str(device_id))
    except ValueError:
        raise ValidationError("The selected device id is invalid.", field="device_id") from None


async def load_ingestion_device(session: AsyncSession, device_id: UUID | str) -> CctvDevice:
    """
    Load a device that is allowed to submit detections.

    Raises:
        ValidationError: If the device is unknown, retired, disabled or
            has no coordinates.
    """
    device = await get_device_by_id(session, _parse_device_id(device_id))
    if device is None or not device.accepts_detections:
        raise ValidationError("The selected device id is invalid.", field="device_id")
    if device.latitude is None or device.longitude is None:
        raise ValidationError("Device has no location configured.", field="device_id")
    return device


def _detection_metadata(device: CctvDevice, verdict: SnapshotVerdict) -> dict:
    return {
        "detection_source": "yolo",
        "analysis": verdict.raw,
        "device_id": str(device.id),
        "device_name": device.device_name,
        "ai_confidence": verdict.confidence,
        "detected_objects": verdict.detected_objects,
        "ai_reasoning": verdict.reasoning,
    }


async def ingest_detection(
    session: AsyncSession,
    image_bytes: bytes,
    device_id: UUID | str,
    detected_at: datetime | None = None,
    *,
    classifier: EmergencyClassifier,
    storage: LocalMediaStorage,
    publisher: EventPublisher | None = None,
    filename: str | None = None,
    mime_type: str | None = None,
    max_bytes: int | None = None,
) -> DetectionResult:
    """
    Accept a detector snapshot.

    Args:
        session: Async database session; committed by this call.
        image_bytes: Raw image.
        device_id: Submitting CCTV device.
        detected_at: When the detector saw the event (defaults to now).
        classifier: Verifies whether the frame is a real emergency.
        storage: Where accepted frames are saved.
        publisher: Receives AccidentDetected / FalseAlarmDetected.
        filename: Original upload filename.
        mime_type: Upload content type.
        max_bytes: Size limit (defaults to settings.max_upload_bytes).

    Returns:
        DetectionResult with the created record's ID and false-alarm flag.

    Raises:
        ValidationError: Invalid file or device; nothing is stored.
        UpstreamIntegrationError: Verification or storage failed.
        PersistenceError: The database write failed and was rolled back.
    """
    validate_snapshot(
        image_bytes,
        mime_type,
        max_bytes if max_bytes is not None else get_settings().max_upload_bytes,
    )
    device = await load_ingestion_device(session, device_id)
    detected_at = detected_at or utcnow()

    verdict = await classifier.classify(
        image_bytes,
        mime_type,
        device_name=device.device_name,
        location=device.location_name,
    )

    if not verdict.is_emergency:
        return await _record_false_alarm(session, device, verdict, detected_at, publisher)

    stored = await storage.save(
        image_bytes,
        DETECTION_FOLDER,
        filename=filename,
        mime_type=mime_type,
    )

    try:
        accident = Accident(
            cctv_device_id=device.id,
            title=verdict.title
            or f"{verdict.accident_type.value.title()} detected at {device.location_name or device.device_name}",
            description=verdict.description,
            accident_type=verdict.accident_type,
            severity=verdict.severity or Severity.medium,
            status=AccidentStatus.pending,
            latitude=device.latitude,
            longitude=device.longitude,
            occurred_at=detected_at,
        )
        session.add(accident)
        await session.flush()

        media = IncidentMedia(
            source_type=MediaSourceType.accident,
            source_id=accident.id,
            source_category=MediaCategory.cctv_detection,
            media_type=MediaType.image,
            original_path=stored.url,
            storage_key=stored.storage_key,
            original_filename=filename,
            file_size=stored.size,
            mime_type=mime_type,
            detection_metadata=_detection_metadata(device, verdict),
            device_identifier=str(device.id),
            captured_at=detected_at,
        )
        session.add(media)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        await storage.delete(stored.storage_key)
        logger.error(
            "Failed to record detected accident, rolled back",
            device_id=str(device.id),
            error=str(e),
        )
        raise PersistenceError(
            "Failed to record detected accident",
            details={"device_id": str(device.id)},
        ) from e

    logger.info(
        "Accident detected and recorded",
        accident_id=str(accident.id),
        device_id=str(device.id),
        accident_type=accident.accident_type.value,
        confidence=verdict.confidence,
    )

    await publish_safely(
        publisher,
        AccidentDetected(
            accident=accident_snapshot(accident),
            media=media_snapshot(media),
            device_name=device.device_name,
        ),
    )

    return DetectionResult(
        record_id=accident.id,
        false_alarm=False,
        verdict=verdict,
        device=device,
        accident=accident,
        media=media,
    )


async def _record_false_alarm(
    session: AsyncSession,
    device: CctvDevice,
    verdict: SnapshotVerdict,
    detected_at: datetime,
    publisher: EventPublisher | None,
) -> DetectionResult:
    """Store a rejected detection; the frame itself is not kept."""
    false_alarm = FalseAlarm(
        cctv_device_id=device.id,
        attempted_accident_type=verdict.raw.get("accident_type"),
        reasoning=verdict.reasoning,
        confidence_score=verdict.confidence,
        detected_objects=verdict.detected_objects,
        analysis_metadata=verdict.raw,
        detected_at=detected_at,
    )

    try:
        session.add(false_alarm)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(
            "Failed to record false alarm, rolled back",
            device_id=str(device.id),
            error=str(e),
        )
        raise PersistenceError(
            "Failed to record false alarm",
            details={"device_id": str(device.id)},
        ) from e

    logger.info(
        "Detection verified as false alarm",
        false_alarm_id=str(false_alarm.id),
        device_id=str(device.id),
        reasoning=verdict.reasoning,
    )

    await publish_safely(
        publisher,
        FalseAlarmDetected(false_alarm=false_alarm_snapshot(false_alarm, device.device_name)),
    )

    return DetectionResult(
        record_id=false_alarm.id,
        false_alarm=True,
        verdict=verdict,
        device=device,
        false_alarm_record=false_alarm,
    )
