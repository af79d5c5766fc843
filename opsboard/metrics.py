"""Prometheus instruments for the realtime layer."""
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

sessions_gauge = Gauge(
    'opsboard_realtime_sessions', 'Open realtime sessions', ['transport']
)
envelopes_counter = Counter(
    'opsboard_realtime_envelopes_total', 'Envelopes pushed to clients', ['type']
)
poll_failures_counter = Counter(
    'opsboard_realtime_poll_failures_total', 'Activity polls that failed to read the data source'
)
evictions_counter = Counter(
    'opsboard_realtime_evictions_total', 'Sessions terminated by the liveness sweep'
)


def render_latest():
    return generate_latest(), CONTENT_TYPE_LATEST
