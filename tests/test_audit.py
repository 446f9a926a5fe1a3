"""
Tests for the audit log and its queries.
"""

from datetime import timedelta

import pytest

from flagengine.core.features import (
    AuditAction,
    AuditFilter,
    AuditLog,
    Environment,
    MemoryAuditStore,
    StoreUnavailableError,
)
from flagengine.core.features.audit import compute_changes, new_event
from flagengine.utils.timezone import utc_now

from conftest import FlakyAuditStore


def _event(flag_key: str = "beta_x", action: str = AuditAction.UPDATED, actor: str = "alice", **kwargs):
    return new_event(
        action=action,
        flag_key=flag_key,
        actor=actor,
        environment=kwargs.pop("environment", Environment.PRODUCTION),
        **kwargs,
    )


async def _fill(audit_log: AuditLog, count: int, **kwargs) -> list:
    return [await audit_log.append(_event(version=i + 1, **kwargs)) for i in range(count)]


@pytest.mark.asyncio
async def test_append_assigns_sequence(audit_log: AuditLog):
    stored = await _fill(audit_log, 3)
    assert [e.sequence for e in stored] == [1, 2, 3]


@pytest.mark.asyncio
async def test_page_is_newest_first(audit_log: AuditLog):
    await _fill(audit_log, 25)

    first = await audit_log.query().page(offset=0, limit=10)
    last = await audit_log.query().page(offset=20, limit=10)

    assert [e.version for e in first.items] == list(range(25, 15, -1))
    assert first.total == 25
    assert first.has_next is True
    assert [e.version for e in last.items] == [5, 4, 3, 2, 1]
    assert last.has_next is False


@pytest.mark.asyncio
async def test_iteration_walks_every_page(audit_log: AuditLog):
    """page_size is 10, so 25 events take three fetches."""
    await _fill(audit_log, 25)

    versions = [e.version async for e in audit_log.query()]

    assert versions == list(range(25, 0, -1))


@pytest.mark.asyncio
async def test_query_is_restartable(audit_log: AuditLog):
    await _fill(audit_log, 12)
    query = audit_log.query(AuditFilter(flag_key="beta_x"))

    first = [e.id async for e in query]
    second = [e.id async for e in query]

    assert first == second
    assert len(first) == 12


@pytest.mark.asyncio
async def test_appends_during_iteration_are_not_repeated(audit_log: AuditLog):
    await _fill(audit_log, 15)

    seen = []
    async for event in audit_log.query():
        seen.append(event.sequence)
        if len(seen) == 5:
            await _fill(audit_log, 3)

    assert seen == list(range(15, 0, -1))


@pytest.mark.asyncio
async def test_filters(audit_log: AuditLog):
    await audit_log.append(_event("beta_x", AuditAction.CREATED, "alice"))
    await audit_log.append(_event("beta_x", AuditAction.TOGGLED, "bob"))
    await audit_log.append(_event("exp_y", AuditAction.CREATED, "alice"))
    await audit_log.append(_event("beta_x", AuditAction.CREATED, "alice", environment=Environment.STAGING))

    async def count(**filters) -> int:
        return await audit_log.query(AuditFilter(**filters)).count()

    assert await count() == 4
    assert await count(flag_key="beta_x") == 3
    assert await count(flag_key="beta_x", environment=Environment.PRODUCTION) == 2
    assert await count(actor="bob") == 1
    assert await count(action=AuditAction.CREATED) == 3
    assert await count(since=utc_now() + timedelta(minutes=1)) == 0
    assert await count(since=utc_now() - timedelta(minutes=1)) == 4


@pytest.mark.asyncio
async def test_failed_append_is_queued_and_raised():
    store = FlakyAuditStore()
    audit_log = AuditLog(store)
    await audit_log.append(_event(version=1))

    store.down = True
    with pytest.raises(StoreUnavailableError):
        await audit_log.append(_event(version=2))
    assert audit_log.pending_count == 1

    store.down = False
    stored = await audit_log.append(_event(version=3))

    assert stored.version == 3
    assert [e.version async for e in audit_log.query()] == [3, 2, 1]


@pytest.mark.asyncio
async def test_page_wire_format():
    audit_log = AuditLog(MemoryAuditStore())
    event = await audit_log.append(_event(version=1, changes={"enabled": {"old": False, "new": True}}))

    payload = (await audit_log.query().page()).to_dict()

    assert payload["total"] == 1
    assert payload["hasNext"] is False
    item = payload["items"][0]
    assert item["id"] == event.id
    assert item["flagKey"] == "beta_x"
    assert item["environment"] == "Production"
    assert item["changes"] == {"enabled": {"old": False, "new": True}}


def test_compute_changes():
    changes = compute_changes(
        {"enabled": False, "rollout_percentage": 10, "name": "Beta"},
        {"enabled": True, "rollout_percentage": 10, "owner": "growth"},
    )

    assert changes == {
        "enabled": {"old": False, "new": True},
        "name": {"old": "Beta", "new": None},
        "owner": {"old": None, "new": "growth"},
    }
