from __future__ import annotations

import argparse
import asyncio
import json

import websockets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Print Aurora Guard /events messages")
    parser.add_argument("--url", default="ws://127.0.0.1:8765/events")
    parser.add_argument("--activate", action="store_true", help="Send protection.start after connecting")
    parser.add_argument("--skip-status", action="store_true", help="Hide periodic status messages")
    return parser


async def main() -> None:
    args = build_parser().parse_args()
    async with websockets.connect(args.url) as ws:
        await ws.send(json.dumps({"v": 1, "type": "hello", "client": "events_print"}))
        if args.activate:
            await ws.send(json.dumps({"type": "protection.start"}))
        async for msg in ws:
            if args.skip_status and isinstance(msg, str) and msg.startswith('{"type":"status"'):
                continue
            print(msg)


if __name__ == "__main__":
    asyncio.run(main())
