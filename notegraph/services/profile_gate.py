import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import models, schemas
from ..errors import ConsentRequired


class ProfileGate:
    """Consent to AI processing, stored on the user's profile."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _get_row(self, user_id: uuid.UUID) -> Optional[models.Profile]:
        result = await self.db.execute(
            select(models.Profile)
            .where(models.Profile.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_profile(self, user_id: uuid.UUID) -> Optional[schemas.Profile]:
        db_profile = await self._get_row(user_id)
        return schemas.Profile.model_validate(db_profile) if db_profile else None

    async def ensure_ai_consent(self, user_id: uuid.UUID) -> None:
        """Raises ConsentRequired unless the user has a profile that agreed to AI processing."""
        profile = await self.get_profile(user_id)
        if profile is None or not profile.has_agreed_to_ai_data_processing:
            raise ConsentRequired()

    async def set_ai_consent(self, user_id: uuid.UUID, agreed: bool) -> schemas.Profile:
        db_profile = await self._get_row(user_id)
        if db_profile is None:
            db_profile = models.Profile(user_id=user_id, has_agreed_to_ai_data_processing=agreed)
            self.db.add(db_profile)
        else:
            db_profile.has_agreed_to_ai_data_processing = agreed
        await self.db.flush()
        await self.db.refresh(db_profile)
        return schemas.Profile.model_validate(db_profile)
