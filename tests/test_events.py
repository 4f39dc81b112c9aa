from __future__ import annotations

import json
from pathlib import Path
import tempfile
import unittest

from sf_autopilot.events import EventLog, read_json, write_json


class EventLogTests(unittest.TestCase):
    def test_jsonl_rows(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "events" / "run.jsonl"
            log = EventLog(path)
            events = log.for_account("hero@s1")
            events.emit("dispatch", "sent", "info", {"command": "update"})
            events.emit("decision", "decided", "debug", {"command": "update"})
            events.emit("safety", "odd", "loud", {})

            rows = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
            self.assertEqual([row["event_type"] for row in rows], ["sent", "odd"])
            self.assertEqual(rows[0]["account"], "hero@s1")
            self.assertEqual(rows[0]["payload"], {"command": "update"})
            self.assertEqual(rows[1]["severity"], "info")
            self.assertEqual(log.rows, [])

    def test_memory_log_keeps_debug_when_enabled(self) -> None:
        log = EventLog(None, debug=True)
        log.for_account("a").emit("decision", "decided", "debug")
        self.assertEqual(log.rows[0]["event_type"], "decided")

    def test_write_json_replaces_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "status" / "a.json"
            write_json(path, {"state": "idle"})
            write_json(path, {"state": "busy"})
            self.assertEqual(read_json(path), {"state": "busy"})
            self.assertEqual(sorted(p.name for p in path.parent.iterdir()), ["a.json"])


if __name__ == "__main__":
    unittest.main()
