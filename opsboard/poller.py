"""Activity poller: turns the newest page of the activity log into envelopes.

The poller itself is stateless; the caller owns the cursor (the id of the
newest item already delivered) and passes it in on every tick.

Only the single newest id is compared against the cursor. When more items
arrive between two ticks than fit in one page, the cursor falls out of the
fetched window and the whole page is treated as new; anything older than the
page is never delivered. That bounded staleness is intentional.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from . import envelopes
from .logs import emit_event, get_logger
from .metrics import poll_failures_counter

logger = get_logger('poller')

# query(limit=..., sort=...) -> newest-first list of activity dicts
ActivityQuery = Callable[..., List[Dict[str, Any]]]


@dataclass
class PollResult:
    envelopes: List[Dict[str, Any]] = field(default_factory=list)
    cursor: Optional[str] = None
    failed: bool = False


def new_since(activities: List[Dict[str, Any]], cursor: str) -> List[Dict[str, Any]]:
    """Items strictly newer than ``cursor``, oldest first.

    ``activities`` is newest first. If the cursor is not in the page, the
    whole page counts as new.
    """
    idx = next((i for i, a in enumerate(activities) if a.get('id') == cursor), -1)
    fresh = activities if idx == -1 else activities[:idx]
    return list(reversed(fresh))


class ActivityPoller:
    def __init__(self, query: ActivityQuery, page_size: int = 10, batch_size: int = 5):
        self.query = query
        self.page_size = page_size
        self.batch_size = batch_size

    def poll(self, cursor: Optional[str], connection_id: Optional[str] = None) -> PollResult:
        try:
            activities = list(self.query(limit=self.page_size, sort='newest'))
        except Exception as e:
            poll_failures_counter.inc()
            emit_event('poll_failed', level='warning', connection_id=connection_id, error=str(e))
            return PollResult([], cursor, True)

        if not activities:
            return PollResult([], cursor)

        newest_id = activities[0].get('id')
        if cursor is None:
            # seed the client with recent history, not the whole log
            return PollResult([envelopes.activity_batch(activities[:self.batch_size])], newest_id)
        if newest_id == cursor:
            return PollResult([], cursor)

        fresh = new_since(activities, cursor)
        logger.debug('poll found %d new activities for %s', len(fresh), connection_id)
        return PollResult([envelopes.activity_created(a) for a in fresh], newest_id)


def poll_interval(failures: int, base: float = 2.0, cap: float = 30.0) -> float:
    """Seconds until the next tick: ``base`` when healthy, exponential after failures."""
    if failures <= 0:
        return base
    return min(1.0 * (2 ** min(failures, 16)), cap)
