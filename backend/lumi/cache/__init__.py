"""In-memory caches used in front of the remote store."""

from .badge_cache import BADGES, USER_ID, BadgeCache

__all__ = ["BADGES", "BadgeCache", "USER_ID"]
