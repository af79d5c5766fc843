import pytest

from opsboard.channels import Channel
from opsboard.registry import SubscriptionRegistry


class StubSession:
    def __init__(self, connection_id, transport='ws', ok=True):
        self.connection_id = connection_id
        self.transport = transport
        self.channels = []
        self.received = []
        self.ok = ok

    async def push(self, msg):
        if self.ok:
            self.received.append(msg)
        return self.ok

    def describe(self):
        return {'id': self.connection_id, 'channels': [c.value for c in self.channels]}


def test_subscribe_unknown_id_returns_none():
    reg = SubscriptionRegistry()
    assert reg.subscribe('nobody', ['activities']) is None
    assert reg.unsubscribe('nobody', ['activities']) is None


def test_subscribe_returns_full_set_and_ignores_invalid():
    reg = SubscriptionRegistry()
    reg.add(StubSession('c1'))
    assert reg.subscribe('c1', ['activities', 'bogus']) == [Channel.ACTIVITIES]
    assert reg.subscribe('c1', ['status', 'activities']) == [Channel.ACTIVITIES, Channel.STATUS]


def test_unsubscribe_returns_only_removed():
    reg = SubscriptionRegistry()
    reg.add(StubSession('c1'))
    reg.subscribe('c1', ['activities', 'status'])
    assert reg.unsubscribe('c1', ['status', 'cron']) == [Channel.STATUS]
    assert reg.get('c1').channels == [Channel.ACTIVITIES]


def test_remove_and_lookup():
    reg = SubscriptionRegistry()
    reg.add(StubSession('c1'))
    reg.add(StubSession('c2', transport='sse'))
    assert 'c1' in reg and len(reg) == 2
    assert [s.connection_id for s in reg.sessions(transport='sse')] == ['c2']
    reg.remove('c1')
    assert reg.ids() == ['c2']
    assert reg.remove('c1') is None


@pytest.mark.asyncio
async def test_broadcast_reaches_only_subscribers():
    reg = SubscriptionRegistry()
    a, b, dead = StubSession('a'), StubSession('b'), StubSession('dead', ok=False)
    for s in (a, b, dead):
        reg.add(s)
    reg.subscribe('a', ['activities'])
    reg.subscribe('dead', ['activities'])
    reg.subscribe('b', ['status'])

    delivered = await reg.broadcast(Channel.ACTIVITIES, {'type': 'activity'})
    assert delivered == 1
    assert a.received == [{'type': 'activity'}]
    assert b.received == []

    assert await reg.broadcast_all({'type': 'heartbeat'}) == 2


def test_stats():
    reg = SubscriptionRegistry()
    reg.add(StubSession('a'))
    reg.add(StubSession('b'))
    reg.subscribe('a', ['activities'])
    reg.subscribe('b', ['activities', 'queue'])
    stats = reg.stats()
    assert stats['totalConnections'] == 2
    assert stats['channels'] == ['activities', 'queue']
    assert {c['id'] for c in stats['clients']} == {'a', 'b'}
