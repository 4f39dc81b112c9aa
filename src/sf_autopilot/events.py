from __future__ import annotations

import json
from pathlib import Path
import threading
from typing import Any

from .models import utc_now_iso


SEVERITIES = ("debug", "info", "warning", "error", "critical")


def write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=True) + "\n", encoding="utf-8")
    tmp.replace(path)


def read_json(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


class EventLog:
    """Append-only JSONL journal shared by every account of one process."""

    def __init__(self, path: Path | None, *, debug: bool = False) -> None:
        self.path = path
        self.debug = debug
        self._lock = threading.Lock()
        self.rows: list[dict[str, Any]] = []
        self.keep_rows = path is None

    def append(
        self,
        *,
        phase: str,
        event_type: str,
        severity: str,
        account: str,
        payload: dict[str, Any],
    ) -> None:
        if severity not in SEVERITIES:
            severity = "info"
        if severity == "debug" and not self.debug:
            return
        row = {
            "ts": utc_now_iso(),
            "phase": phase,
            "event_type": event_type,
            "severity": severity,
            "account": account,
            "payload": payload,
        }
        with self._lock:
            if self.keep_rows:
                self.rows.append(row)
            if self.path is None:
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(row, ensure_ascii=True, default=str) + "\n")

    def for_account(self, account: str) -> "AccountEvents":
        return AccountEvents(self, account)


class AccountEvents:
    def __init__(self, log: EventLog, account: str) -> None:
        self.log = log
        self.account = account

    def emit(self, phase: str, event_type: str, severity: str, payload: dict[str, Any] | None = None) -> None:
        self.log.append(
            phase=phase,
            event_type=event_type,
            severity=severity,
            account=self.account,
            payload=dict(payload or {}),
        )
