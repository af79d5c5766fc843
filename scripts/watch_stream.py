"""Follow a realtime server from the terminal.

    python scripts/watch_stream.py --url http://127.0.0.1:8001 --channels activities,status
    python scripts/watch_stream.py --transport stream --action refresh_activities

Prints every envelope as one JSON line. With ``--transport auto`` the socket
is tried first and the push stream is used if it does not handshake in time.
"""
import argparse
import asyncio
import json
import sys

from opsboard.client import RealtimeClient, StreamTransport, WebSocketTransport, choose_transport
from opsboard.logs import configure_logging


def _ws_url(base):
    if base.startswith('https://'):
        return 'wss://' + base[len('https://'):]
    if base.startswith('http://'):
        return 'ws://' + base[len('http://'):]
    return base


async def main(args):
    channels = [c.strip() for c in args.channels.split(',') if c.strip()]
    base = args.url.rstrip('/')

    def ws_factory():
        return WebSocketTransport(_ws_url(base) + '/api/ws', channels)

    def stream_factory():
        return StreamTransport(base, '/api/realtime', channels, admin_key=args.admin_key)

    if args.transport == 'ws':
        factory = ws_factory
    elif args.transport == 'stream':
        factory = stream_factory
    else:
        factory = await choose_transport(ws_factory, stream_factory, args.handshake_timeout)

    connected = asyncio.Event()

    def show(msg):
        print(json.dumps(msg), flush=True)

    def on_state(state, status):
        print(f'# {status}', file=sys.stderr, flush=True)

    client = RealtimeClient(factory, channels=channels, on_message=show, on_state=on_state,
                            on_connect=lambda cid: connected.set(),
                            on_error=lambda err: print(f'# error: {err}', file=sys.stderr, flush=True))
    runner = client.start()
    try:
        if args.action:
            await asyncio.wait_for(connected.wait(), args.handshake_timeout * 2)
            payload = json.loads(args.payload) if args.payload else {}
            outcome = await client.send_action(args.action, payload)
            print(json.dumps({'action': args.action, 'success': outcome.success,
                              'result': outcome.result, 'error': outcome.error}), flush=True)
            return 0 if outcome.success else 1
        await runner
        return 1
    finally:
        await client.disconnect()


if __name__ == '__main__':
    parser = argparse.ArgumentParser(prog='watch_stream', description='Print realtime envelopes from an opsboard server')
    parser.add_argument('--url', default='http://127.0.0.1:8001', help='Server base URL')
    parser.add_argument('--channels', default='activities,status')
    parser.add_argument('--transport', choices=['auto', 'ws', 'stream'], default='auto')
    parser.add_argument('--handshake-timeout', type=float, default=5.0, dest='handshake_timeout')
    parser.add_argument('--admin-key', dest='admin_key', help='Sent as X-Admin-Key on stream actions')
    parser.add_argument('--action', help='Run one action once connected, print its outcome and exit')
    parser.add_argument('--payload', help='JSON payload for --action')
    parser.add_argument('--log-level', default='WARNING', dest='log_level')
    args = parser.parse_args()

    configure_logging(args.log_level)
    try:
        sys.exit(asyncio.run(main(args)))
    except KeyboardInterrupt:
        sys.exit(130)
