from __future__ import annotations

import argparse
import asyncio
import dataclasses

from auroraguard.config import GuardConfig
from auroraguard.server import GuardServer


def build_parser(defaults: GuardConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aurora Guard keyword-triggered emergency alert server")
    parser.add_argument("--host", default=defaults.host)
    parser.add_argument("--port", type=int, default=defaults.port)
    parser.add_argument("--log-level", default=defaults.log_level)
    parser.add_argument("--log-dir", default=defaults.log_dir)
    parser.add_argument("--contacts", dest="contacts_path", default=defaults.contacts_path)
    parser.add_argument(
        "--keywords",
        default=",".join(defaults.keywords),
        help="Comma-separated emergency keywords",
    )
    parser.add_argument("--audio-source", choices=["phone", "local"], default=defaults.audio_source)
    parser.add_argument("--mic-device", default=defaults.mic_device)
    parser.add_argument("--cooldown-s", type=float, default=defaults.alert_cooldown_s)
    return parser


def load_config(argv: list[str] | None = None) -> GuardConfig:
    env_config = GuardConfig.from_env()
    args = build_parser(env_config).parse_args(argv)
    keywords = tuple(k for k in (p.strip() for p in str(args.keywords).split(",")) if k)
    return dataclasses.replace(
        env_config,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        log_dir=args.log_dir,
        contacts_path=args.contacts_path,
        keywords=keywords,
        audio_source=args.audio_source,
        mic_device=args.mic_device,
        alert_cooldown_s=args.cooldown_s,
    )


async def _amain() -> int:
    server = GuardServer(load_config())
    await server.run()
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
