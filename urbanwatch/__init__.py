"""UrbanWatch - municipal concern reporting and triage service."""

__version__ = "0.1.0"
