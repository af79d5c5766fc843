from opsboard.channels import (
    REALTIME_DEFAULT,
    WS_STREAM_DEFAULT,
    Channel,
    filter_channels,
    names,
    parse_channel_param,
)


def test_filter_drops_unknown_and_non_strings():
    assert filter_channels(['activities', 'bogus', 42, None, 'status']) == [Channel.ACTIVITIES, Channel.STATUS]


def test_filter_keeps_first_seen_order_without_duplicates():
    got = filter_channels(['status', 'activities', 'status', Channel.ACTIVITIES])
    assert got == [Channel.STATUS, Channel.ACTIVITIES]


def test_filter_accepts_single_string_and_empty():
    assert filter_channels('cron') == [Channel.CRON]
    assert filter_channels(None) == []
    assert filter_channels([]) == []


def test_parse_channel_param_defaults():
    assert parse_channel_param(None, WS_STREAM_DEFAULT) == WS_STREAM_DEFAULT
    assert parse_channel_param('', REALTIME_DEFAULT) == REALTIME_DEFAULT
    # all-unknown falls back too
    assert parse_channel_param('nope,also-nope', REALTIME_DEFAULT) == REALTIME_DEFAULT


def test_parse_channel_param_trims_and_filters():
    assert names(parse_channel_param(' queue , gateway,zzz', WS_STREAM_DEFAULT)) == ['queue', 'gateway']
