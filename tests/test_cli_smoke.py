from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


def _run_cli(*args: str, cwd: Path) -> subprocess.CompletedProcess[str]:
    repo_root = Path(__file__).resolve().parents[1]

    env = dict(os.environ)
    existing_pp = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = (
        f"{repo_root}{os.pathsep}{existing_pp}" if existing_pp else str(repo_root)
    )

    return subprocess.run(
        [sys.executable, "-m", "post_lens", *args],
        cwd=cwd,
        env=env,
        capture_output=True,
        text=True,
    )


class TestCLISmoke(unittest.TestCase):
    def test_search_prints_command_and_url(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            proc = _run_cli(
                "search",
                "--keyword",
                "sleep",
                "--min-faves",
                "100",
                "--since",
                "2025-01-01",
                cwd=Path(td),
            )

        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertIn("command=sleep min_faves:100 since:2025-01-01", proc.stdout)
        self.assertIn("url=https://x.com/search?q=", proc.stdout)

    def test_search_rejects_bad_date(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            proc = _run_cli("search", "--keyword", "x", "--since", "soon", cwd=Path(td))
        self.assertEqual(proc.returncode, 2)

    def test_fetch_invalid_url_exits_without_network(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log_path = Path(td) / "fetch.jsonl"
            proc = _run_cli(
                "fetch",
                "https://example.com/not-a-tweet",
                "--log",
                str(log_path),
                cwd=Path(td),
            )

            self.assertEqual(proc.returncode, 2, msg=proc.stderr)
            self.assertIn("Not a recognized post URL", proc.stderr)
            # The log is opened before resolving, but no provider is ever tried.
            lines = [ln for ln in log_path.read_text(encoding="utf-8").splitlines() if ln.strip()]
            events = [json.loads(ln).get("event") for ln in lines]
            self.assertNotIn("provider_attempt", events)

    def test_fetch_missing_config_exits_2(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            proc = _run_cli(
                "fetch",
                "https://x.com/alice/status/1",
                "--config",
                str(Path(td) / "missing.yaml"),
                cwd=Path(td),
            )
        self.assertEqual(proc.returncode, 2)
        self.assertIn("Config file not found", proc.stderr)


if __name__ == "__main__":
    unittest.main()
