import pytest

from opsboard.session import StreamSession


@pytest.fixture
def stream_session(hub, recorder):
    """A registered push-stream session without running timers."""
    rec = recorder()
    session = StreamSession('client_1', 'sse', rec.push, rec.close, hub.registry,
                            hub.poller(), hub.dispatcher, hub.settings)
    hub.registry.add(session)
    session.recorder = rec
    return session


def test_subscription_for_unknown_client_rejected(client):
    r = client.post('/api/realtime', json={'clientId': 'ghost', 'action': 'subscribe', 'channels': ['agents']})
    assert r.status_code == 400
    assert r.json() == {'error': 'Invalid client ID'}


def test_subscribe_and_unsubscribe_open_stream(client, stream_session):
    r = client.post('/api/realtime', json={'clientId': 'client_1', 'action': 'subscribe',
                                           'channels': ['agents', 'bogus', 'queue']})
    assert r.status_code == 200
    assert r.json() == {'success': True, 'subscriptions': ['agents', 'queue']}
    assert stream_session.recorder.sent[-1]['type'] == 'subscribed'

    r = client.post('/api/realtime', json={'connectionId': 'client_1', 'action': 'unsubscribe',
                                           'channels': ['agents']})
    assert r.json()['subscriptions'] == ['queue']
    last = stream_session.recorder.sent[-1]
    assert last['type'] == 'unsubscribed'
    assert last['channels'] == ['agents']


def test_unknown_subscription_action(client, stream_session):
    r = client.post('/api/realtime', json={'clientId': 'client_1', 'action': 'shuffle', 'channels': []})
    assert r.status_code == 400


def test_action_outcomes_can_be_polled(client):
    r = client.post('/api/realtime/action', json={'type': 'ping', 'requestId': 'r-1'})
    assert r.status_code == 200
    assert r.json()['success'] is True
    assert r.json()['requestId'] == 'r-1'

    polled = client.get('/api/realtime/action', params={'requestId': 'r-1'}).json()
    assert polled['status'] == 'success'
    assert polled['result']['pong'] is True

    r = client.post('/api/realtime/action', json={'type': 'nope', 'requestId': 'r-2'})
    assert r.status_code == 400
    assert r.json() == {'error': 'Unknown action type: nope', 'requestId': 'r-2'}
    assert client.get('/api/realtime/action', params={'requestId': 'r-2'}).json()['status'] == 'error'

    assert client.get('/api/realtime/action', params={'requestId': 'never-sent'}).json() == {'status': 'pending'}
    assert client.get('/api/realtime/action').status_code == 400


def test_failed_action_uses_its_status(client):
    r = client.post('/api/realtime/action', json={'type': 'action:reject', 'payload': {'activityId': 'x'},
                                                  'requestId': 'r-3'})
    assert r.status_code == 404
    assert r.json()['error'] == 'Activity not found'


def test_stats_list_open_sessions(client, stream_session):
    stats = client.get('/api/realtime/stats').json()
    assert stats['totalConnections'] == 1
    assert stats['clients'][0]['id'] == 'client_1'
    assert stats['clients'][0]['transport'] == 'sse'


def test_status_and_metrics(client):
    status = client.get('/api/status').json()
    assert status['ok'] is True
    assert status['connections'] == 0
    r = client.get('/metrics')
    assert r.status_code == 200
    assert b'opsboard_realtime_sessions' in r.content


def test_activity_endpoints(client):
    r = client.post('/api/activities', json={'type': 'task', 'description': 'indexed repo'})
    assert r.status_code == 200
    aid = r.json()['id']

    listing = client.get('/api/activities', params={'limit': 5}).json()
    assert listing['total'] == 1
    assert listing['activities'][0]['id'] == aid

    assert client.get(f'/api/activities/{aid}').json()['description'] == 'indexed repo'
    assert client.get('/api/activities/missing').status_code == 404
    assert client.get('/api/activities', params={'sort': 'random'}).status_code == 400
