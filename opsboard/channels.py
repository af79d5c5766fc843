from enum import Enum
from typing import Iterable, List, Optional


class Channel(str, Enum):
    ACTIVITIES = 'activities'
    AGENTS = 'agents'
    SESSIONS = 'sessions'
    SUBAGENTS = 'subagents'
    NOTIFICATIONS = 'notifications'
    STATUS = 'status'
    SYSTEM = 'system'
    CRON = 'cron'
    GATEWAY = 'gateway'
    QUEUE = 'queue'


CHANNEL_VALUES = frozenset(c.value for c in Channel)

# Push stream served at /api/ws
WS_STREAM_DEFAULT = [Channel.ACTIVITIES, Channel.SESSIONS, Channel.STATUS]
# Push stream served at /api/realtime
REALTIME_DEFAULT = [Channel.ACTIVITIES, Channel.AGENTS, Channel.NOTIFICATIONS]


def filter_channels(values: Optional[Iterable]) -> List[Channel]:
    """Keep only known channel names, in first-seen order, without duplicates.

    Anything that is not a member of ``Channel`` (unknown names, non-strings)
    is dropped without error.
    """
    out: List[Channel] = []
    if not values:
        return out
    if isinstance(values, (str, bytes)):
        values = [values]
    for v in values:
        if isinstance(v, Channel):
            ch = v
        elif isinstance(v, str) and v in CHANNEL_VALUES:
            ch = Channel(v)
        else:
            continue
        if ch not in out:
            out.append(ch)
    return out


def parse_channel_param(raw: Optional[str], default: Iterable[Channel]) -> List[Channel]:
    """Parse ``?channels=a,b,c``. Missing, empty or all-unknown input yields ``default``."""
    if not raw:
        return list(default)
    requested = filter_channels(part.strip() for part in raw.split(','))
    return requested or list(default)


def names(channels: Iterable[Channel]) -> List[str]:
    return [c.value for c in channels]
