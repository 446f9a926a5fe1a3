"""
Audit event API routes.

Offset pagination, newest first:
    GET /audit-events?flagKey=beta_x&environment=Production&page=1&perPage=20
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query

from flagengine.core.features import Audit, AuditFilter, Environment
from flagengine.utils.timezone import to_utc

router = APIRouter()


@router.get("")
async def list_audit_events(
    audit_log: Audit,
    flag_key: str | None = Query(None, alias="flagKey"),
    environment: Environment | None = Query(None),
    since: datetime | None = Query(None),
    action: str | None = Query(None),
    actor: str | None = Query(None),
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    per_page: int = Query(20, ge=1, le=100, alias="perPage"),
) -> dict[str, Any]:
    """
    List audit events with offset pagination.

    Returns:
        {
            "items": [...],
            "total": 150,
            "offset": 0,
            "limit": 20,
            "hasNext": true
        }
    """
    filters = AuditFilter(
        flag_key=flag_key,
        environment=environment,
        since=to_utc(since) if since else None,
        action=action,
        actor=actor,
    )
    result = await audit_log.query(filters).page(offset=(page - 1) * per_page, limit=per_page)
    return result.to_dict()


@router.get("/count")
async def count_audit_events(
    audit_log: Audit,
    flag_key: str | None = Query(None, alias="flagKey"),
    environment: Environment | None = Query(None),
    since: datetime | None = Query(None),
) -> dict[str, int]:
    """
    Get count of audit events matching filters.

    Useful for UI badges and dashboard stats.
    """
    filters = AuditFilter(
        flag_key=flag_key,
        environment=environment,
        since=to_utc(since) if since else None,
    )
    return {"count": await audit_log.query(filters).count()}
