import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import models, schemas
from ..database.enums import EntityType, RelationshipType, SuggestionStatus, SuggestionType
from ..errors import ValidationError

PERIOD_DAYS = {"week": 7, "month": 30, "year": 365}
PERIODS = ("all",) + tuple(PERIOD_DAYS)


def period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Lower bound for ``created_this_period``; None for ``all``."""
    if period not in PERIODS:
        raise ValidationError(f"period must be one of: {', '.join(PERIODS)}")
    if period == "all":
        return None
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=PERIOD_DAYS[period])


def _rate(part: int, whole: int) -> float:
    return part / whole if whole else 0.0


class StatisticsService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _count_by(self, column, user_column, user_id: uuid.UUID) -> Dict:
        result = await self.db.execute(
            select(column, func.count()).where(user_column == user_id).group_by(column)
        )
        return {key: count for key, count in result.all()}

    async def _note_stats(self, user_id: uuid.UUID, since: Optional[datetime]) -> schemas.NoteStats:
        total = (await self.db.execute(
            select(func.count()).select_from(models.Note).where(models.Note.user_id == user_id)
        )).scalar_one()
        if since is None:
            return schemas.NoteStats(total=total, created_this_period=total)
        in_period = (await self.db.execute(
            select(func.count())
            .select_from(models.Note)
            .where(models.Note.user_id == user_id)
            .where(models.Note.created_at >= since)
        )).scalar_one()
        return schemas.NoteStats(total=total, created_this_period=in_period)

    async def _suggestion_stats(self, user_id: uuid.UUID) -> schemas.SuggestionStats:
        result = await self.db.execute(
            select(models.Suggestion.type, models.Suggestion.status, func.count())
            .where(models.Suggestion.user_id == user_id)
            .group_by(models.Suggestion.type, models.Suggestion.status)
        )
        by_type = {t: schemas.SuggestionTypeStats() for t in SuggestionType}
        generated = accepted = rejected = 0
        for type_, status, count in result.all():
            generated += count
            by_type[type_].generated += count
            if status == SuggestionStatus.accepted:
                accepted += count
                by_type[type_].accepted += count
            elif status == SuggestionStatus.rejected:
                rejected += count
        for stats in by_type.values():
            stats.acceptance_rate = _rate(stats.accepted, stats.generated)
        return schemas.SuggestionStats(
            total_generated=generated,
            total_accepted=accepted,
            total_rejected=rejected,
            acceptance_rate=_rate(accepted, generated),
            by_type=by_type,
        )

    async def get_statistics(self, user_id: uuid.UUID, period: str = "all") -> schemas.Statistics:
        since = period_start(period)

        entity_counts = await self._count_by(models.Entity.type, models.Entity.user_id, user_id)
        relationship_counts = await self._count_by(models.Relationship.type, models.Relationship.user_id, user_id)

        return schemas.Statistics(
            period=period,
            notes=await self._note_stats(user_id, since),
            entities=schemas.EntityStats(
                total=sum(entity_counts.values()),
                by_type={t: entity_counts.get(t, 0) for t in EntityType},
            ),
            relationships=schemas.RelationshipStats(
                total=sum(relationship_counts.values()),
                by_type={t: relationship_counts.get(t, 0) for t in RelationshipType},
            ),
            ai_suggestions=await self._suggestion_stats(user_id),
        )
