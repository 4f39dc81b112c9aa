from __future__ import annotations

import argparse
import json
from pathlib import Path
import random

from .config import AppConfig, CharacterConfig, load_config
from .decision import decide
from .events import read_json
from .models import GameStateSnapshot, parse_ts, utc_now
from .runner import status_file_name
from .scheduler import AdaptiveScheduler
from .session import SessionState


def _default_config_path() -> Path:
    here = Path(__file__).resolve()
    return here.parents[2] / "config" / "settings.toml"


def _character(cfg: AppConfig, args: argparse.Namespace) -> CharacterConfig:
    character = cfg.character(args.character, args.server)
    if character is None:
        raise SystemExit(f"no character {args.character!r} on server {args.server!r} in config")
    return character


def _snapshot(path: str) -> GameStateSnapshot:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    return GameStateSnapshot.from_dict(payload)


def cmd_decide(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    character = _character(cfg, args)
    now = parse_ts(args.now) or utc_now()
    decision = decide(_snapshot(args.snapshot), character, now)
    print(json.dumps(decision.to_dict(), indent=2, default=str))
    return 0


def cmd_next_wake(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    character = _character(cfg, args)
    now = parse_ts(args.now) or utc_now()
    scheduler = AdaptiveScheduler(cfg.scheduler, random.Random(args.seed))
    plan = scheduler.next_delay(SessionState(args.state), _snapshot(args.snapshot), character, now)
    print(json.dumps(plan.to_dict(), indent=2))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    status_dir = cfg.resolve(cfg.runtime.status_dir)
    if args.character:
        paths = [status_dir / status_file_name(_character(cfg, args).account_key)]
    else:
        paths = sorted(status_dir.glob("*.json")) if status_dir.exists() else []
    if not paths or not all(path.exists() for path in paths):
        print(json.dumps({"status": "missing", "path": str(paths[0] if paths else status_dir)}, indent=2))
        return 1
    payload = {path.stem: read_json(path) for path in paths}
    print(json.dumps(payload, indent=2))
    return 0


def cmd_characters(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    print(json.dumps([item.to_dict() for item in cfg.characters], indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SF Autopilot CLI")
    parser.add_argument("--config", default=str(_default_config_path()))
    sub = parser.add_subparsers(dest="command", required=True)

    def account_args(p: argparse.ArgumentParser, *, required: bool) -> None:
        p.add_argument("--character", required=required, default="")
        p.add_argument("--server", required=required, default="")

    p_decide = sub.add_parser("decide", help="Print the next command for a snapshot file")
    p_decide.add_argument("--snapshot", required=True, help="Path to a snapshot JSON file")
    p_decide.add_argument("--now", default="", help="ISO timestamp to evaluate at (default: now)")
    account_args(p_decide, required=True)
    p_decide.set_defaults(func=cmd_decide)

    p_wake = sub.add_parser("next-wake", help="Print the scheduler's next wake-up for a snapshot file")
    p_wake.add_argument("--snapshot", required=True, help="Path to a snapshot JSON file")
    p_wake.add_argument("--now", default="", help="ISO timestamp to evaluate at (default: now)")
    p_wake.add_argument("--state", default="idle", choices=[item.value for item in SessionState])
    p_wake.add_argument("--seed", type=int, default=0, help="Jitter seed")
    account_args(p_wake, required=True)
    p_wake.set_defaults(func=cmd_next_wake)

    p_status = sub.add_parser("status", help="Read per-account health status files")
    account_args(p_status, required=False)
    p_status.set_defaults(func=cmd_status)

    p_chars = sub.add_parser("characters", help="List configured characters")
    p_chars.set_defaults(func=cmd_characters)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
