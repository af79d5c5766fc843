import pytest

from opsboard.db.activity_store import ActivityStore
from opsboard.errors import DataSourceError


def test_log_and_read_newest_first():
    s = ActivityStore(':memory:')
    first = s.log_activity('task', 'one', timestamp='2024-01-01T00:00:00.000Z')
    second = s.log_activity('task', 'two', timestamp='2024-01-01T00:00:01.000Z')
    res = s.get_activities(limit=10)
    assert [a['id'] for a in res['activities']] == [second, first]
    assert res['total'] == 2
    assert [a['id'] for a in s.get_activities(sort='oldest')['activities']] == [first, second]


def test_same_timestamp_breaks_ties_by_insert_order():
    s = ActivityStore(':memory:')
    ts = '2024-01-01T00:00:00.000Z'
    ids = [s.log_activity('task', str(i), timestamp=ts) for i in range(3)]
    assert [a['id'] for a in s.newest(limit=3)] == list(reversed(ids))


def test_limit_status_filter_and_total():
    s = ActivityStore(':memory:')
    for i in range(4):
        s.log_activity('task', f'ok {i}')
    s.log_activity('task', 'broke', status='error')
    res = s.get_activities(limit=2)
    assert len(res['activities']) == 2
    assert res['total'] == 5
    errors = s.get_activities(status='error')
    assert errors['total'] == 1
    assert errors['activities'][0]['description'] == 'broke'


def test_bad_sort_rejected():
    s = ActivityStore(':memory:')
    with pytest.raises(ValueError):
        s.get_activities(sort='sideways')


def test_metadata_round_trip_and_status_update():
    s = ActivityStore(':memory:')
    aid = s.log_activity('review', 'needs approval', status='pending', metadata={'agent': 'a1'})
    assert s.get_activity_by_id(aid)['metadata'] == {'agent': 'a1'}
    assert s.update_activity_status(aid, 'approved', {'agent': 'a1', 'notes': 'ok'})
    got = s.get_activity_by_id(aid)
    assert got['status'] == 'approved'
    assert got['metadata']['notes'] == 'ok'
    assert s.update_activity_status('missing', 'approved') is False
    assert s.get_activity_by_id('missing') is None


def test_read_failure_is_data_source_error():
    s = ActivityStore(':memory:')
    s.conn.close()
    with pytest.raises(DataSourceError):
        s.newest()


def test_creates_parent_directory(tmp_path):
    path = tmp_path / 'nested' / 'dir' / 'ops.db'
    s = ActivityStore(str(path))
    s.log_activity('task', 'x')
    assert path.exists()
    s.close()
