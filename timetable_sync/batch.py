"""
Batch execution of a SyncPlan against the remote calendar.

Operations run in fixed-size chunks: concurrently inside a chunk, one chunk
after the other. This bounds the number of simultaneous calls to the calendar
provider without serialising the whole run. A failing operation is logged and
counted; it never stops its siblings, the chunk or the run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from timetable_sync.model import SyncStats
from timetable_sync.reconcile import SyncPlan

log = logging.getLogger(__name__)

BATCH_SIZE = 5

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
_VERBS = {CREATED: "create", UPDATED: "update", DELETED: "delete"}


class RemoteCalendar(Protocol):
    """
    The calendar provider operations the executor needs (see gcal.GoogleCalendar).
    """

    def insert(self, body: Dict[str, Any]) -> str: ...

    def update(self, event_id: str, body: Dict[str, Any]) -> None: ...

    def delete(self, event_id: str) -> None: ...


Operation = Callable[[], Any]


def _chunks(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


async def _run_one(kind: str, label: str, op: Operation) -> Optional[str]:
    try:
        await asyncio.to_thread(op)
    except Exception:
        log.exception("Failed to %s %s", _VERBS[kind], label)
        return None
    return kind


def plan_operations(
    plan: SyncPlan,
    calendar: RemoteCalendar,
    tzname: str,
    color_id: str = "9",
) -> List[Tuple[str, str, Operation]]:
    """
    Flatten a plan into (kind, label, callable) triples, creates first, then updates, then deletes.
    """
    ops: List[Tuple[str, str, Operation]] = []
    for ev in plan.creates:
        ops.append((CREATED, ev.id, lambda ev=ev: calendar.insert(ev.to_gcal_body(tzname, color_id))))
    for upd in plan.updates:
        ops.append(
            (UPDATED, upd.event.id, lambda upd=upd: calendar.update(upd.remote_id, upd.event.to_gcal_body(tzname, color_id)))
        )
    for dele in plan.deletes:
        ops.append((DELETED, dele.remote_id, lambda rid=dele.remote_id: calendar.delete(rid)))
    return ops


async def apply_plan(
    plan: SyncPlan,
    calendar: RemoteCalendar,
    tzname: str,
    batch_size: int = BATCH_SIZE,
    color_id: str = "9",
) -> SyncStats:
    """
    Apply every operation of the plan and return the running totals.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive (got {batch_size})")

    stats = SyncStats()
    ops = plan_operations(plan, calendar, tzname, color_id)

    for chunk in _chunks(ops, batch_size):
        results = await asyncio.gather(*(_run_one(kind, label, op) for kind, label, op in chunk))
        for outcome in results:
            if outcome == CREATED:
                stats.created += 1
            elif outcome == UPDATED:
                stats.updated += 1
            elif outcome == DELETED:
                stats.deleted += 1
            else:
                stats.failed += 1

    log.info(
        "Applied plan: %d created, %d updated, %d deleted, %d failed",
        stats.created,
        stats.updated,
        stats.deleted,
        stats.failed,
    )
    return stats
