"""UrbanWatch API routes."""

from urbanwatch.api.routes import auth, concerns, operator, purok_leader, yolo

__all__ = [
    "auth",
    "concerns",
    "operator",
    "purok_leader",
    "yolo",
]
