"""
Notification handlers for UrbanWatch domain events.

Each handler covers one channel for one event (email the citizen, SMS
the purok leader, push to a realtime channel) so the dispatcher can
retry them independently. Handlers raise on transient failures and
return quietly when there is nobody to notify.

Subscriptions are assembled explicitly by build_subscriptions; channels
without a configured client are simply not registered.
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from urbanwatch.config import get_logger
from urbanwatch.db.queries import get_user_by_id
from urbanwatch.services.events import (
    AccidentDetected,
    AccidentStatusUpdated,
    ConcernAssigned,
    ConcernStatusUpdated,
    FalseAlarmDetected,
    Subscriptions,
)
from urbanwatch.services.mailer import SmtpMailer, build_status_update_email
from urbanwatch.services.realtime import RealtimeService
from urbanwatch.services.sms import TextBeeClient, format_concern_assigned_message, mask_phone_number

logger = get_logger(__name__)

SYSTEM_ACTOR_NAME = "UrbanWatch System"

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class NotificationService:
    """Delivers domain events to citizens, purok leaders and operators."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        realtime: RealtimeService | None = None,
        sms: TextBeeClient | None = None,
        mailer: SmtpMailer | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.realtime = realtime
        self.sms = sms
        self.mailer = mailer

    async def _lookup_contact(self, user_id: str | None) -> tuple[str | None, str | None]:
        """Return (email, phone) for a user, or (None, None) if unknown."""
        if not user_id:
            return None, None
        async with self._session_factory() as session:
            user = await get_user_by_id(session, UUID(user_id))
        if user is None:
            return None, None
        return user.email, user.phone

    # -------------------------------------------------------------------------
    # ConcernStatusUpdated
    # -------------------------------------------------------------------------

    async def email_citizen_status_update(self, event: ConcernStatusUpdated) -> None:
        """Email the concern's owner about the new status."""
        concern = event.concern
        email, _phone = await self._lookup_contact(concern.get("citizen_id"))
        if not email:
            logger.warning(
                "Cannot send concern status notification - no citizen email found",
                concern_id=concern["id"],
            )
            return

        subject, body = build_status_update_email(
            concern,
            previous_status=event.previous_status,
            new_status=event.new_status,
            actor_name=event.actor.get("name") or SYSTEM_ACTOR_NAME,
            remarks=event.remarks,
        )
        await self.mailer.send(email, subject, body)

        logger.info(
            "Concern status notification email sent",
            concern_id=concern["id"],
            tracking_code=concern["tracking_code"],
            new_status=event.new_status,
        )

    async def push_citizen_status_update(self, event: ConcernStatusUpdated) -> None:
        """Push the status change to the citizen's realtime channel."""
        citizen_id = event.concern.get("citizen_id")
        if not citizen_id:
            return

        await self.realtime.publish_to_user(
            citizen_id,
            ConcernStatusUpdated.name,
            {
                "concern_id": event.concern["id"],
                "tracking_code": event.concern["tracking_code"],
                "title": event.concern["title"],
                "previous_status": event.previous_status,
                "new_status": event.new_status,
                "remarks": event.remarks,
                "updated_by": event.actor.get("name") or SYSTEM_ACTOR_NAME,
                "updated_at": event.concern.get("updated_at"),
            },
        )

    # -------------------------------------------------------------------------
    # ConcernAssigned
    # -------------------------------------------------------------------------

    async def sms_purok_leader_assignment(self, event: ConcernAssigned) -> None:
        """Text the assigned purok leader about a new concern."""
        concern = event.concern
        leader_id = event.distribution.get("purok_leader_id")
        _email, phone = await self._lookup_contact(leader_id)
        if not phone:
            logger.warning(
                "Purok Leader contact number not found",
                concern_id=concern["id"],
                tracking_code=concern["tracking_code"],
                purok_leader_id=leader_id,
            )
            return

        await self.sms.send_sms([phone], format_concern_assigned_message(concern))

        logger.info(
            "SMS notification sent successfully",
            concern_id=concern["id"],
            tracking_code=concern["tracking_code"],
            purok_leader_id=leader_id,
            phone_number=mask_phone_number(phone),
        )

    async def push_purok_leader_assignment(self, event: ConcernAssigned) -> None:
        """Push the new assignment to the purok leader's realtime channel."""
        concern = event.concern
        await self.realtime.publish_to_purok_leader(
            event.distribution["purok_leader_id"],
            ConcernAssigned.name,
            {
                "concern": {
                    "id": concern["id"],
                    "tracking_code": concern["tracking_code"],
                    "title": concern["title"],
                    "description": concern["description"],
                    "category": concern["category"],
                    "severity": concern["severity"],
                    "status": concern["status"],
                    "latitude": concern["latitude"],
                    "longitude": concern["longitude"],
                    "address": concern["address"],
                    "custom_location": concern["custom_location"],
                    "created_at": concern["created_at"],
                },
                "distribution": {
                    "id": event.distribution["id"],
                    "status": event.distribution["status"],
                    "assigned_at": event.distribution["assigned_at"],
                },
                "images": [
                    {"id": image["id"], "url": image["original_path"]}
                    for image in event.images
                ],
            },
        )

    # -------------------------------------------------------------------------
    # Detection feed
    # -------------------------------------------------------------------------

    async def push_accident_feed(self, event: AccidentDetected | FalseAlarmDetected) -> None:
        """Push detections to the operators' live feed."""
        if isinstance(event, AccidentDetected):
            data = {
                "accident": event.accident,
                "image_url": event.media.get("original_path"),
                "device_name": event.device_name,
            }
        else:
            data = {"false_alarm": event.false_alarm}
        await self.realtime.publish_accident_feed(event.name, data)

    async def push_accident_status_update(self, event: AccidentStatusUpdated) -> None:
        """Move an accident marker on the operators' live map."""
        accident = event.accident
        await self.realtime.publish_accident_feed(
            event.name,
            {
                "id": accident["id"],
                "latitude": accident["latitude"],
                "longitude": accident["longitude"],
                "accident_type": accident["accident_type"],
                "severity": accident["severity"],
                "title": accident["title"],
                "status": event.new_status,
                "previous_status": event.previous_status,
                "occurred_at": accident["occurred_at"],
            },
        )


def build_subscriptions(service: NotificationService) -> Subscriptions:
    """
    Map event names to the handlers that should run for them.

    Called once at worker startup.
    """
    subscriptions: Subscriptions = {
        ConcernStatusUpdated.name: [],
        ConcernAssigned.name: [],
        AccidentDetected.name: [],
        AccidentStatusUpdated.name: [],
        FalseAlarmDetected.name: [],
    }

    if service.mailer is not None:
        subscriptions[ConcernStatusUpdated.name].append(service.email_citizen_status_update)
    if service.sms is not None:
        subscriptions[ConcernAssigned.name].append(service.sms_purok_leader_assignment)
    if service.realtime is not None:
        subscriptions[ConcernStatusUpdated.name].append(service.push_citizen_status_update)
        subscriptions[ConcernAssigned.name].append(service.push_purok_leader_assignment)
        subscriptions[AccidentDetected.name].append(service.push_accident_feed)
        subscriptions[FalseAlarmDetected.name].append(service.push_accident_feed)
        subscriptions[AccidentStatusUpdated.name].append(service.push_accident_status_update)

    logger.info(
        "Notification subscriptions registered",
        handlers={name: len(handlers) for name, handlers in subscriptions.items()},
    )
    return subscriptions
