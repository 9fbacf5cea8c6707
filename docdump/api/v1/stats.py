"""GET /api/v1/stats: per-owner counters, computed at read time."""

from __future__ import annotations

from fastapi import APIRouter

from docdump.api.dependencies import Queries
from docdump.auth.token import CurrentOwner
from docdump.schemas.documents import OwnerStats

router = APIRouter(tags=["Stats"])


@router.get("/stats", response_model=OwnerStats, summary="Document counts and total size")
async def get_stats(owner_id: CurrentOwner, queries: Queries) -> OwnerStats:
    return await queries.get_stats(owner_id)
