"""Run the realtime backend locally with a few demo activities.

    python scripts/dev_backend.py --seed 5 --trickle 10

``--trickle`` starts a background writer on its own connection, the way an
agent process appends to the activity log while dashboards are watching.
"""
import argparse
import os
import random
import threading
import time

import uvicorn

from opsboard.config import Settings
from opsboard.db.activity_store import ActivityStore
from opsboard.hub import RealtimeHub
from opsboard.main import create_app

DEMO = [
    ('task', 'Indexed workspace files', 'success'),
    ('tool', 'Ran test suite', 'success'),
    ('review', 'Deploy to staging needs approval', 'pending'),
    ('agent', 'Subagent spawned for log triage', 'success'),
    ('cron', 'Nightly backup finished', 'success'),
    ('tool', 'Fetch of upstream mirror timed out', 'error'),
]


def seed(store, count):
    for _ in range(count):
        kind, desc, status = random.choice(DEMO)
        store.log_activity(kind, desc, status, metadata={'demo': True},
                           duration_ms=random.randint(20, 4000), tokens_used=random.randint(0, 3000))


def trickle(db_path, every):
    store = ActivityStore(db_path)
    while True:
        time.sleep(every)
        seed(store, 1)


if __name__ == '__main__':
    parser = argparse.ArgumentParser(prog='dev_backend', description='Serve the realtime backend with demo data')
    parser.add_argument('--host', default='127.0.0.1')
    parser.add_argument('--port', type=int, default=int(os.getenv('PORT', '8001')))
    parser.add_argument('--seed', type=int, default=5, help='Demo activities to insert before serving')
    parser.add_argument('--trickle', type=float, default=0.0,
                        help='Insert one demo activity every N seconds while serving (0 disables)')
    args = parser.parse_args()

    settings = Settings.from_env()
    hub = RealtimeHub(settings)
    seed(hub.store, args.seed)
    if args.trickle > 0 and settings.db_path != ':memory:':
        threading.Thread(target=trickle, args=(settings.db_path, args.trickle), daemon=True).start()
    uvicorn.run(create_app(settings, hub), host=args.host, port=args.port)
