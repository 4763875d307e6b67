"""UrbanWatch API package."""
