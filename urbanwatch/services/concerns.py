"""
Concern submission and read access.

A submitted concern is stored together with its media, its distribution
to a purok leader and the first history entry, in one transaction.
ConcernAssigned is published once that transaction has committed.

Citizens only ever see their own live concerns; purok leaders only see
concerns distributed to them. Status changes go through the transitions
module, never through here.
"""

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from urbanwatch.config import get_logger, get_settings
from urbanwatch.db.models import (
    Concern,
    ConcernCategory,
    ConcernDistribution,
    ConcernHistory,
    ConcernStatus,
    ConcernType,
    DistributionStatus,
    IncidentMedia,
    MediaCategory,
    MediaSourceType,
    MediaType,
    Severity,
    User,
    utcnow,
)
from urbanwatch.db.queries import (
    append_history,
    count_citizen_concerns,
    get_assigned_distribution,
    get_citizen_concern,
    get_media_for_source,
    get_media_for_sources,
    list_assigned_distributions,
    list_citizen_concerns,
    tracking_code_exists,
)
from urbanwatch.errors import NotFoundOrUnauthorized, PersistenceError, ValidationError
from urbanwatch.services.assignment import AssignmentPolicy
from urbanwatch.services.events import (
    ConcernAssigned,
    EventPublisher,
    concern_snapshot,
    distribution_snapshot,
    media_snapshot,
    publish_safely,
)
from urbanwatch.services.storage import LocalMediaStorage, StoredFile
from urbanwatch.services.transitions import NOT_ASSIGNED_MESSAGE

logger = get_logger(__name__)

CONCERN_FOLDER = "concerns"
MAX_FILES_PER_CONCERN = 3
MAX_TITLE_LENGTH = 100
TRACKING_CODE_ATTEMPTS = 5
TRACKING_CODE_ALPHABET = string.ascii_uppercase + string.digits

SUBMISSION_REMARK = "Concern submitted and automatically distributed to Purok Leader."
VOICE_DESCRIPTION = "Audio recording received. Transcription pending..."
CONCERN_NOT_FOUND_MESSAGE = "Concern not found."


@dataclass(frozen=True)
class UploadedFile:
    """A file received with a concern submission."""

    data: bytes
    filename: str | None = None
    content_type: str | None = None


@dataclass
class ConcernDraft:
    """Citizen input for a new concern."""

    type: ConcernType
    category: ConcernCategory
    title: str | None = None
    description: str | None = None
    severity: Severity | None = None
    transcript_text: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    custom_location: str | None = None


@dataclass(frozen=True)
class SubmittedConcern:
    """Everything written by a successful submission."""

    concern: Concern
    distribution: ConcernDistribution
    purok_leader: User
    history: ConcernHistory
    media: list[IncidentMedia] = field(default_factory=list)


@dataclass(frozen=True)
class ConcernDetail:
    """A concern with its media; distribution and histories are eager loaded."""

    concern: Concern
    media: list[IncidentMedia] = field(default_factory=list)


@dataclass(frozen=True)
class AssignedConcern:
    """A concern as seen by the purok leader it is distributed to."""

    distribution: ConcernDistribution
    concern: Concern
    media: list[IncidentMedia] = field(default_factory=list)


# =============================================================================
# Validation helpers
# =============================================================================


def generate_tracking_code(now: datetime | None = None) -> str:
    """Build a tracking code of the form CN-YYYYMMDD-XXXX."""
    now = now or utcnow()
    suffix = "".join(secrets.choice(TRACKING_CODE_ALPHABET) for _ in range(4))
    return f"CN-{now:%Y%m%d}-{suffix}"


def media_type_for(mime_type: str | None) -> MediaType:
    """Audio uploads are tagged as audio; everything else is an image."""
    if mime_type and mime_type.startswith("audio/"):
        return MediaType.audio
    return MediaType.image


def _validate_draft(draft: ConcernDraft) -> None:
    if draft.type == ConcernType.manual:
        if not draft.title or not draft.title.strip():
            raise ValidationError("Title is required.", field="title")
        if not draft.description or not draft.description.strip():
            raise ValidationError("Description is required.", field="description")
    if draft.title and len(draft.title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            f"Title cannot exceed {MAX_TITLE_LENGTH} characters.", field="title"
        )
    if draft.latitude is not None and not -90 <= draft.latitude <= 90:
        raise ValidationError("Latitude must be between -90 and 90.", field="latitude")
    if draft.longitude is not None and not -180 <= draft.longitude <= 180:
        raise ValidationError("Longitude must be between -180 and 180.", field="longitude")


def _validate_files(files: list[UploadedFile], max_bytes: int) -> None:
    if len(files) > MAX_FILES_PER_CONCERN:
        raise ValidationError(
            f"Maximum {MAX_FILES_PER_CONCERN} files can be uploaded.", field="files"
        )
    for upload in files:
        mime_type = upload.content_type or ""
        if not (mime_type.startswith("image/") or mime_type.startswith("audio/")):
            raise ValidationError("Each file must be an image or audio recording.", field="files")
        if not upload.data:
            raise ValidationError("Each file must be a valid file.", field="files")
        if len(upload.data) > max_bytes:
            raise ValidationError(
                f"Each file must not exceed {max_bytes // (1024 * 1024)}MB.", field="files"
            )


def _resolve_title_and_description(draft: ConcernDraft, now: datetime) -> tuple[str, str | None]:
    if draft.type == ConcernType.voice:
        title = draft.title or f"Voice Concern - {now:%b %d, %Y %H:%M}"
        description = draft.description or VOICE_DESCRIPTION
        return title, description
    return draft.title, draft.description


async def _unique_tracking_code(session: AsyncSession, now: datetime) -> str:
    for _ in range(TRACKING_CODE_ATTEMPTS):
        code = generate_tracking_code(now)
        if not await tracking_code_exists(session, code):
            return code
    raise PersistenceError("Could not allocate a unique tracking code")


# =============================================================================
# Submission
# =============================================================================


async def create_concern(
    session: AsyncSession,
    draft: ConcernDraft,
    citizen_id: UUID | None,
    files: list[UploadedFile] | None = None,
    *,
    storage: LocalMediaStorage,
    assignment: AssignmentPolicy,
    publisher: EventPublisher | None = None,
    max_bytes: int | None = None,
) -> SubmittedConcern:
    """
    Submit a concern and distribute it to a purok leader.

    Args:
        session: Async database session; committed by this call.
        draft: Validated citizen input.
        citizen_id: Submitting citizen, or None for anonymous origin.
        files: Images or audio attached to the concern.
        storage: Where uploads are saved.
        assignment: Chooses the purok leader.
        publisher: Receives ConcernAssigned after commit.
        max_bytes: Per-file size limit (defaults to settings.max_upload_bytes).

    Returns:
        SubmittedConcern with the new concern, distribution, history and media.

    Raises:
        ValidationError: Invalid input or no purok leader available.
        UpstreamIntegrationError: A file could not be stored.
        PersistenceError: The database write failed and was rolled back.
    """
    files = files or []
    _validate_draft(draft)
    _validate_files(
        files,
        max_bytes if max_bytes is not None else get_settings().max_upload_bytes,
    )

    now = utcnow()
    title, description = _resolve_title_and_description(draft, now)
    stored: list[StoredFile] = []

    try:
        concern = Concern(
            id=uuid4(),
            citizen_id=citizen_id,
            tracking_code=await _unique_tracking_code(session, now),
            type=draft.type,
            title=title,
            description=description,
            category=draft.category,
            severity=draft.severity or Severity.low,
            status=ConcernStatus.pending,
            transcript_text=draft.transcript_text,
            latitude=draft.latitude,
            longitude=draft.longitude,
            address=draft.address,
            custom_location=draft.custom_location,
            created_at=now,
            updated_at=now,
        )
        leader = await assignment.choose_purok_leader(session, concern)
        session.add(concern)

        media: list[IncidentMedia] = []
        for upload in files:
            saved = await storage.save(
                upload.data,
                CONCERN_FOLDER,
                filename=upload.filename,
                mime_type=upload.content_type,
            )
            stored.append(saved)
            media.append(
                IncidentMedia(
                    source_type=MediaSourceType.concern,
                    source_id=concern.id,
                    source_category=MediaCategory.citizen_concern,
                    media_type=media_type_for(upload.content_type),
                    original_path=saved.url,
                    storage_key=saved.storage_key,
                    original_filename=upload.filename,
                    file_size=saved.size,
                    mime_type=upload.content_type,
                    captured_at=now,
                )
            )
        session.add_all(media)

        distribution = ConcernDistribution(
            concern_id=concern.id,
            purok_leader_id=leader.id,
            status=DistributionStatus.assigned,
            assigned_at=now,
        )
        session.add(distribution)

        history = await append_history(
            session,
            concern_id=concern.id,
            status=ConcernStatus.pending,
            remarks=SUBMISSION_REMARK,
        )
        await session.commit()

    except SQLAlchemyError as e:
        await session.rollback()
        await _discard(storage, stored)
        logger.error("Failed to submit concern, rolled back", error=str(e))
        raise PersistenceError("Failed to submit concern") from e
    except Exception:
        await session.rollback()
        await _discard(storage, stored)
        raise

    logger.info(
        "Concern submitted",
        concern_id=str(concern.id),
        tracking_code=concern.tracking_code,
        concern_type=concern.type.value,
        purok_leader_id=str(leader.id),
        media_count=len(media),
    )

    await publish_safely(
        publisher,
        ConcernAssigned(
            concern=concern_snapshot(concern),
            distribution=distribution_snapshot(distribution),
            images=[media_snapshot(m) for m in media],
        ),
    )

    return SubmittedConcern(
        concern=concern,
        distribution=distribution,
        purok_leader=leader,
        history=history,
        media=media,
    )


async def _discard(storage: LocalMediaStorage, stored: list[StoredFile]) -> None:
    for saved in stored:
        try:
            await storage.delete(saved.storage_key)
        except OSError as e:
            logger.warning(
                "Failed to remove orphaned upload",
                storage_key=saved.storage_key,
                error=str(e),
            )


# =============================================================================
# Citizen access
# =============================================================================


async def list_concerns_for_citizen(
    session: AsyncSession,
    citizen_id: UUID,
    *,
    status: ConcernStatus | None = None,
    category: ConcernCategory | None = None,
    severity: Severity | None = None,
    page: int = 1,
    page_size: int = 15,
) -> tuple[list[ConcernDetail], int]:
    """List a citizen's own live concerns, newest first, with media."""
    concerns, total = await list_citizen_concerns(
        session,
        citizen_id,
        status=status,
        category=category,
        severity=severity,
        page=page,
        page_size=page_size,
    )
    media = await get_media_for_sources(
        session, MediaSourceType.concern, [c.id for c in concerns]
    )
    return [ConcernDetail(concern=c, media=media.get(c.id, [])) for c in concerns], total


async def count_concerns_for_citizen(
    session: AsyncSession,
    citizen_id: UUID,
    *,
    status: ConcernStatus | None = None,
    category: ConcernCategory | None = None,
    severity: Severity | None = None,
) -> int:
    """Count a citizen's live concerns with the list filters applied."""
    return await count_citizen_concerns(
        session,
        citizen_id,
        status=status,
        category=category,
        severity=severity,
    )


async def get_citizen_concern_detail(
    session: AsyncSession,
    concern_id: UUID,
    citizen_id: UUID,
) -> ConcernDetail:
    """
    Raises:
        NotFoundOrUnauthorized: Unknown, deleted or someone else's concern.
    """
    concern = await get_citizen_concern(session, concern_id, citizen_id, refresh=True)
    if concern is None:
        raise NotFoundOrUnauthorized(CONCERN_NOT_FOUND_MESSAGE)
    media = await get_media_for_source(session, MediaSourceType.concern, concern.id)
    return ConcernDetail(concern=concern, media=media)


async def delete_citizen_concern(
    session: AsyncSession,
    concern_id: UUID,
    citizen_id: UUID,
) -> None:
    """
    Soft-delete a citizen's own concern.

    Raises:
        NotFoundOrUnauthorized: Unknown, already deleted or someone else's concern.
        PersistenceError: The update failed and was rolled back.
    """
    concern = await get_citizen_concern(session, concern_id, citizen_id)
    if concern is None:
        raise NotFoundOrUnauthorized(CONCERN_NOT_FOUND_MESSAGE)

    try:
        concern.deleted_at = utcnow()
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("Failed to delete concern", concern_id=str(concern_id), error=str(e))
        raise PersistenceError(
            "Failed to delete concern",
            details={"concern_id": str(concern_id)},
        ) from e

    logger.info("Concern soft-deleted", concern_id=str(concern_id), citizen_id=str(citizen_id))


# =============================================================================
# Purok leader access
# =============================================================================


async def list_assigned_concerns(
    session: AsyncSession,
    purok_leader_id: UUID,
    *,
    status: DistributionStatus | None = None,
    page: int = 1,
    page_size: int = 15,
) -> tuple[list[AssignedConcern], int]:
    """List concerns distributed to a purok leader, newest assignment first."""
    distributions, total = await list_assigned_distributions(
        session,
        purok_leader_id,
        status=status,
        page=page,
        page_size=page_size,
    )
    media = await get_media_for_sources(
        session, MediaSourceType.concern, [d.concern_id for d in distributions]
    )
    items = [
        AssignedConcern(
            distribution=d,
            concern=d.concern,
            media=media.get(d.concern_id, []),
        )
        for d in distributions
    ]
    return items, total


async def get_assigned_concern(
    session: AsyncSession,
    concern_id: UUID,
    purok_leader_id: UUID,
) -> AssignedConcern:
    """
    Raises:
        NotFoundOrUnauthorized: Unknown, deleted or not assigned to the leader.
    """
    distribution = await get_assigned_distribution(session, concern_id, purok_leader_id)
    if distribution is None:
        raise NotFoundOrUnauthorized(NOT_ASSIGNED_MESSAGE)
    media = await get_media_for_source(session, MediaSourceType.concern, concern_id)
    return AssignedConcern(
        distribution=distribution,
        concern=distribution.concern,
        media=media,
    )
