import os
import uuid
from typing import Optional

from fastapi import Header

from ..config.llm import GatewayAIClient
from ..errors import ValidationError

# Owner used when a request carries no X-User-Id header (single-user local setup).
DEFAULT_USER_ID = uuid.UUID(os.getenv("DEFAULT_USER_ID", "00000000-0000-0000-0000-000000000001"))


async def get_owner_id(x_user_id: Optional[str] = Header(default=None)) -> uuid.UUID:
    if not x_user_id:
        return DEFAULT_USER_ID
    try:
        return uuid.UUID(x_user_id)
    except ValueError as exc:
        raise ValidationError("X-User-Id must be a valid UUID") from exc


def get_ai_client() -> GatewayAIClient:
    return GatewayAIClient()
