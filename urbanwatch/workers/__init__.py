"""
UrbanWatch Workers - Background event processing.

Contains the worker that delivers domain events from the Redis Stream
to the notification handlers.
"""

from urbanwatch.workers.health import HealthServer, run_health_server
from urbanwatch.workers.main import Worker, WorkerMetrics, main, run

__all__ = [
    "Worker",
    "WorkerMetrics",
    "main",
    "run",
    "HealthServer",
    "run_health_server",
]
