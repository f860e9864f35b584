"""Repository abstractions for database interactions."""

from .alert_repository import AlertRepository
from .profile_repository import ProfileRepository

__all__ = [
    "AlertRepository",
    "ProfileRepository",
]
