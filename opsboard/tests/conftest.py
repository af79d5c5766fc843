import os
import tempfile

# opsboard.main builds a module-level app from the environment on import
os.environ.setdefault('OPSBOARD_DB', os.path.join(tempfile.mkdtemp(prefix='opsboard-test-'), 'opsboard.db'))

import pytest
from fastapi.testclient import TestClient

from opsboard.config import Settings
from opsboard.db.activity_store import ActivityStore
from opsboard.hub import RealtimeHub
from opsboard.main import create_app


class Recorder:
    """Stands in for a transport binding: collects pushed envelopes."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self.fail = False

    async def push(self, msg):
        if self.fail:
            raise ConnectionError('peer gone')
        self.sent.append(msg)

    async def close(self):
        self.closed = True

    def types(self):
        return [m['type'] for m in self.sent]

    def of_type(self, type_):
        return [m for m in self.sent if m['type'] == type_]


@pytest.fixture
def settings():
    # long intervals: tests drive ticks and sweeps by hand
    return Settings(db_path=':memory:', poll_interval=60.0, heartbeat_interval=60.0, liveness_interval=60.0)


@pytest.fixture
def store():
    s = ActivityStore(':memory:')
    yield s
    s.close()


@pytest.fixture
def hub(settings, store):
    return RealtimeHub(settings, store=store)


@pytest.fixture
def recorder():
    return Recorder


@pytest.fixture
def client(settings, hub):
    return TestClient(create_app(settings, hub))
