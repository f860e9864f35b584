"""Profile persistence used by the payment verification boundary."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Profile


class ProfileRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def mark_premium(self, subscription_id: str) -> list[Profile]:
        """Flag every profile tied to ``subscription_id`` as premium."""

        query = select(Profile).where(Profile.subscription_id == subscription_id)
        profiles = list(self._session.execute(query).scalars().all())
        for profile in profiles:
            profile.is_premium = True
        if profiles:
            self._session.flush()
        return profiles
