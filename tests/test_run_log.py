from __future__ import annotations

import io
import json
import tempfile
import unittest
from pathlib import Path

from post_lens.run_log import RunLogger


class TestRunLogger(unittest.TestCase):
    def test_writes_one_json_object_per_line(self) -> None:
        buf = io.StringIO()
        log = RunLogger(stream=buf, session_id="s1")
        log.info("provider_attempt", url="https://x.com/a/status/1", provider="mirror")
        log.warning("resolve_failed")

        records = [json.loads(line) for line in buf.getvalue().splitlines()]
        self.assertEqual([r["event"] for r in records], ["provider_attempt", "resolve_failed"])
        self.assertEqual([r["level"] for r in records], ["INFO", "WARN"])
        self.assertEqual(records[0]["session_id"], "s1")
        self.assertEqual(records[0]["url"], "https://x.com/a/status/1")
        self.assertEqual(records[0]["data"], {"provider": "mirror"})
        self.assertNotIn("data", records[1])
        self.assertNotIn("request_id", records[1])

    def test_request_children_share_sink_and_session(self) -> None:
        buf = io.StringIO()
        root = RunLogger(stream=buf)
        first = root.for_request("req-1")
        second = root.for_request()

        first.info("a")
        second.info("b")

        records = [json.loads(line) for line in buf.getvalue().splitlines()]
        self.assertEqual(records[0]["request_id"], "req-1")
        self.assertTrue(records[1]["request_id"])
        self.assertNotEqual(records[1]["request_id"], "req-1")
        self.assertEqual(records[0]["session_id"], records[1]["session_id"])

    def test_exception_records_type_and_traceback(self) -> None:
        buf = io.StringIO()
        log = RunLogger(stream=buf)
        try:
            raise KeyError("missing")
        except KeyError as e:
            log.exception("provider_crashed", exc=e, provider="mirror")

        record = json.loads(buf.getvalue())
        self.assertEqual(record["level"], "ERROR")
        self.assertEqual(record["data"]["error"]["type"], "KeyError")
        self.assertIn("Traceback", record["data"]["error"]["traceback"])
        self.assertEqual(record["data"]["provider"], "mirror")

    def test_file_sink_appends_when_not_overwriting(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "logs" / "service.jsonl"

            with RunLogger.open(path) as log:
                log.info("first")
            with RunLogger.open(path, overwrite=False) as log:
                log.info("second")

            events = [
                json.loads(line)["event"]
                for line in path.read_text(encoding="utf-8").splitlines()
            ]
        self.assertEqual(events, ["first", "second"])

    def test_closing_a_stream_logger_leaves_the_stream_open(self) -> None:
        buf = io.StringIO()
        with RunLogger(stream=buf) as log:
            log.info("x")
        self.assertFalse(buf.closed)


if __name__ == "__main__":
    unittest.main()
