import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import schemas
from ..database.database import get_db
from ..database.enums import NodeKind
from ..services.graph_assembler import DEFAULT_LEVELS, MAX_LEVELS, MIN_LEVELS, GraphAssembler
from .deps import get_owner_id

router = APIRouter(
    prefix="/api/graph",
    tags=["graph"],
)


@router.get("/", response_model=schemas.Graph)
async def read_graph_endpoint(
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """
    The whole graph of the user's entities and notes, for visualization.
    """
    return await GraphAssembler(db).get_graph(owner_id)


@router.get("/neighborhood", response_model=schemas.Graph)
async def read_neighborhood_endpoint(
    center_id: uuid.UUID,
    center_type: NodeKind,
    levels: int = Query(default=DEFAULT_LEVELS, ge=MIN_LEVELS, le=MAX_LEVELS),
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    return await GraphAssembler(db).get_neighborhood(owner_id, center_id, center_type, levels)
