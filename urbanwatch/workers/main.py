"""
UrbanWatch Worker - Notification Dispatcher

Consumes committed domain events from the Redis Stream and hands each
one to the notification handlers registered for it (email, SMS and
realtime pushes).
"""

import asyncio
import os
import signal
import time
import uuid

from urbanwatch.config import (
    configure_logging,
    get_logger,
    get_settings,
    log_context,
)
from urbanwatch.db import close_db, get_session, init_db
from urbanwatch.services.event_stream import (
    acknowledge_event,
    close_redis_client,
    consume_events,
    ensure_consumer_group,
    get_queue_stats,
    get_redis_client,
)
from urbanwatch.services.events import (
    DispatchOutcome,
    DomainEvent,
    Subscriptions,
    dispatch_event,
)
from urbanwatch.services.mailer import SmtpMailer
from urbanwatch.services.notifications import NotificationService, build_subscriptions
from urbanwatch.services.realtime import RealtimeService
from urbanwatch.services.sms import TextBeeClient
from urbanwatch.workers.health import run_health_server

logger = get_logger(__name__)

# Worker configuration
DEFAULT_BATCH_SIZE = 10
DEFAULT_BLOCK_MS = 5000  # 5 seconds
METRICS_LOG_INTERVAL = 60  # Log metrics every 60 seconds


class WorkerMetrics:
    """Track worker performance metrics."""

    def __init__(self) -> None:
        self.events_processed = 0
        self.events_discarded = 0
        self.handler_failures = 0
        self.total_processing_time = 0.0
        self.start_time = time.time()
        self.last_metrics_log = time.time()

    def record_dispatch(self, outcome: DispatchOutcome, duration: float) -> None:
        """Record a dispatched event and how many of its handlers gave up."""
        self.events_processed += 1
        self.handler_failures += len(outcome.failed)
        self.total_processing_time += duration

    def record_discarded(self) -> None:
        """Record an entry that could not be decoded."""
        self.events_discarded += 1

    @property
    def average_processing_time(self) -> float:
        """Get average processing time in seconds."""
        if self.events_processed == 0:
            return 0.0
        return self.total_processing_time / self.events_processed

    @property
    def uptime(self) -> float:
        """Get worker uptime in seconds."""
        return time.time() - self.start_time

    def to_dict(self) -> dict:
        """Convert metrics to dictionary."""
        return {
            "events_processed": self.events_processed,
            "events_discarded": self.events_discarded,
            "handler_failures": self.handler_failures,
            "average_processing_time_ms": round(self.average_processing_time * 1000, 2),
            "uptime_seconds": round(self.uptime, 2),
        }

    def should_log_metrics(self) -> bool:
        """Check if it's time to log metrics."""
        now = time.time()
        if now - self.last_metrics_log >= METRICS_LOG_INTERVAL:
            self.last_metrics_log = now
            return True
        return False


def build_sms_client() -> TextBeeClient | None:
    """TextBee client, or None when SMS is not configured."""
    settings = get_settings()
    if settings.textbee_api_key is None or not settings.textbee_device_id:
        logger.warning("SMS not configured, purok leader texts disabled")
        return None
    return TextBeeClient(
        api_key=settings.textbee_api_key.get_secret_value(),
        device_id=settings.textbee_device_id,
        base_url=settings.textbee_base_url,
        timeout=settings.http_timeout_seconds,
    )


def build_mailer() -> SmtpMailer | None:
    """SMTP mailer, or None when email is not configured."""
    settings = get_settings()
    if not settings.smtp_host:
        logger.warning("SMTP not configured, citizen emails disabled")
        return None
    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password.get_secret_value() if settings.smtp_password else None,
        sender=settings.mail_from,
        use_tls=settings.smtp_use_tls,
        timeout=settings.http_timeout_seconds,
    )


class Worker:
    """
    Background worker dispatching domain events to notification handlers.

    Every stream entry is acknowledged once its handlers have run (or
    given up), so delivery is at least once.
    """

    def __init__(
        self,
        worker_id: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        block_ms: int = DEFAULT_BLOCK_MS,
        *,
        subscriptions: Subscriptions | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        """
        Initialize the worker.

        Args:
            worker_id: Unique identifier for this worker instance.
                      Defaults to hostname + random suffix.
            batch_size: Maximum entries to fetch per iteration.
            block_ms: How long to block waiting for entries.
            subscriptions: Prebuilt handler mapping; built from settings
                      during initialize() when omitted.
            max_attempts: Attempts per handler (defaults to settings).
            backoff_seconds: Delay between attempts (defaults to settings).
        """
        settings = get_settings()
        self.worker_id = worker_id or self._generate_worker_id()
        self.batch_size = batch_size
        self.block_ms = block_ms
        self.subscriptions = subscriptions
        self.max_attempts = (
            max_attempts
            if max_attempts is not None
            else settings.notification_max_attempts
        )
        self.backoff_seconds = (
            backoff_seconds
            if backoff_seconds is not None
            else settings.notification_backoff_seconds
        )
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._running = False
        self._current_entry: str | None = None
        self._sms: TextBeeClient | None = None
        self._metrics = WorkerMetrics()

    @staticmethod
    def _generate_worker_id() -> str:
        """Generate a unique worker ID."""
        hostname = os.environ.get("HOSTNAME", "worker")
        suffix = uuid.uuid4().hex[:8]
        return f"{hostname}-{suffix}"

    async def initialize(self) -> None:
        """Initialize worker connections and register handlers."""
        logger.info(
            "Initializing worker",
            worker_id=self.worker_id,
            batch_size=self.batch_size,
        )

        await init_db(pool_size=3, max_overflow=5)
        redis_client = await get_redis_client()
        await ensure_consumer_group()

        if self.subscriptions is None:
            self._sms = build_sms_client()
            service = NotificationService(
                get_session,
                realtime=RealtimeService(redis_client),
                sms=self._sms,
                mailer=build_mailer(),
            )
            self.subscriptions = build_subscriptions(service)

        logger.info("Worker initialized", worker_id=self.worker_id)

    async def shutdown(self) -> None:
        """Clean up worker resources."""
        logger.info("Shutting down worker", worker_id=self.worker_id)

        if self._sms is not None:
            await self._sms.close()

        await close_redis_client()
        await close_db()

        logger.info(
            "Worker shutdown complete",
            worker_id=self.worker_id,
            metrics=self._metrics.to_dict(),
        )

    async def handle_event(self, event: DomainEvent) -> DispatchOutcome:
        """Run every handler subscribed to the event."""
        handlers = (self.subscriptions or {}).get(event.name, [])
        if not handlers:
            logger.debug("No handlers subscribed", event_name=event.name)
            return DispatchOutcome()

        return await dispatch_event(
            event,
            handlers,
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
        )

    async def process_entry(self, entry_id: str, event: DomainEvent | None) -> None:
        """Dispatch one stream entry and acknowledge it."""
        self._current_entry = entry_id
        start_time = time.time()

        try:
            with log_context(entry_id=entry_id, worker_id=self.worker_id):
                if event is None:
                    logger.warning("Discarding undecodable entry")
                    self._metrics.record_discarded()
                else:
                    outcome = await self.handle_event(event)
                    self._metrics.record_dispatch(outcome, time.time() - start_time)
                    logger.info(
                        "Event dispatched",
                        event_name=event.name,
                        succeeded=len(outcome.succeeded),
                        failed=len(outcome.failed),
                    )

                await acknowledge_event(entry_id)
        finally:
            self._current_entry = None

    async def start(self) -> None:
        """
        Start the worker loop.

        Continuously consumes events from the stream and dispatches them.
        """
        self._running = True

        logger.info(
            "Worker started",
            worker_id=self.worker_id,
            environment=get_settings().environment,
        )

        try:
            async for entry_id, event in consume_events(
                consumer_name=self.worker_id,
                batch_size=self.batch_size,
                block_ms=self.block_ms,
            ):
                if not self._running:
                    logger.info("Worker stopping, leaving remaining entries pending")
                    break

                try:
                    await self.process_entry(entry_id, event)
                except Exception as e:
                    logger.exception(
                        "Error processing entry",
                        worker_id=self.worker_id,
                        entry_id=entry_id,
                        error=str(e),
                    )
                    # Not acknowledged - entry will be replayed

                if self._metrics.should_log_metrics():
                    await self._log_metrics()

        except Exception as e:
            logger.exception(
                "Fatal error in worker loop",
                worker_id=self.worker_id,
                error=str(e),
            )
            raise

        logger.info(
            "Worker loop ended",
            worker_id=self.worker_id,
            metrics=self._metrics.to_dict(),
        )

    def stop(self) -> None:
        """
        Signal the worker to stop.

        The worker will finish the current entry before stopping.
        """
        logger.info(
            "Worker stop requested",
            worker_id=self.worker_id,
            current_entry=self._current_entry,
        )
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if the worker is running."""
        return self._running

    @property
    def metrics(self) -> dict:
        """Get current worker metrics."""
        return self._metrics.to_dict()

    async def _log_metrics(self) -> None:
        """Log current metrics and queue stats."""
        try:
            queue_stats = await get_queue_stats()
            logger.info(
                "Worker metrics",
                worker_id=self.worker_id,
                metrics=self._metrics.to_dict(),
                queue_length=queue_stats.get("stream_length", 0),
                pending_events=queue_stats.get("pending_count", 0),
                active_consumers=queue_stats.get("consumer_count", 0),
            )
        except Exception as e:
            logger.warning(
                "Failed to log metrics",
                worker_id=self.worker_id,
                error=str(e),
            )


async def main() -> None:
    """Main entry point for the worker."""
    settings = get_settings()
    configure_logging(
        service="urbanwatch-worker",
        json_format=settings.is_production,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    worker = Worker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    worker_task: asyncio.Task | None = None

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        worker.stop()
        if worker_task is not None:
            worker_task.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    health_server = None
    try:
        await worker.initialize()
        health_server = await run_health_server(
            port=settings.worker_health_port,
            worker_metrics_fn=lambda: worker.metrics,
        )

        worker_task = asyncio.create_task(worker.start())
        await worker_task

    except asyncio.CancelledError:
        logger.info("Worker cancelled")

    except Exception as e:
        logger.exception("Worker failed", error=str(e))
        raise

    finally:
        if health_server is not None:
            await health_server.stop()
        await worker.shutdown()


def run() -> None:
    """Run the worker."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
