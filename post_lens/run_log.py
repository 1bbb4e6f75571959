from __future__ import annotations

import json
import sys
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, TextIO


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _truncate(text: str, *, limit: int) -> str:
    s = str(text or "")
    if limit <= 0:
        return ""
    if len(s) <= limit:
        return s
    return s[: max(0, limit - 1)] + "…"


class _Sink:
    """Shared, lock-protected output for a logger and the children it spawns."""

    def __init__(self, *, path: Path | None, stream: TextIO | None, overwrite: bool) -> None:
        self.path = path
        self._stream = stream
        self._owns_fp = path is not None
        self._overwrite = overwrite
        self._opened = False
        self.fp: TextIO | None = stream
        self.lock = Lock()

    def ensure_open(self) -> None:
        if self.fp is not None or self.path is None:
            return

        with self.lock:
            if self.fp is not None:
                return

            self.path.parent.mkdir(parents=True, exist_ok=True)
            mode = "w" if self._overwrite and not self._opened else "a"

            self.fp = self.path.open(mode, encoding="utf-8", newline="\n")
            self._opened = True

    def close(self) -> None:
        with self.lock:
            if self.fp is None:
                return
            try:
                self.fp.flush()
            finally:
                if self._owns_fp:
                    self.fp.close()
                    self.fp = None

    def write(self, line: str) -> None:
        self.ensure_open()
        with self.lock:
            if self.fp is None:
                return
            self.fp.write(line + "\n")
            self.fp.flush()


class RunLogger:
    """
    Tiny JSONL logger for the resolver and the HTTP service.

    Each log line is a single JSON object, making it easy to parse for audits.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        stream: TextIO | None = None,
        overwrite: bool = True,
        request_id: str | None = None,
        session_id: str | None = None,
        _sink: _Sink | None = None,
    ) -> None:
        if _sink is None:
            if path is None and stream is None:
                stream = sys.stderr
            _sink = _Sink(
                path=Path(path) if path is not None else None,
                stream=stream,
                overwrite=bool(overwrite),
            )
        self._sink = _sink
        self._request_id = (request_id or "").strip() or None
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        overwrite: bool = True,
        session_id: str | None = None,
    ) -> "RunLogger":
        logger = cls(path, overwrite=overwrite, session_id=session_id)
        logger._sink.ensure_open()
        return logger

    def close(self) -> None:
        self._sink.close()

    def __enter__(self) -> "RunLogger":
        self._sink.ensure_open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def request_id(self) -> str | None:
        return self._request_id

    def for_request(self, request_id: str | None = None) -> "RunLogger":
        """Return a logger writing to the same sink, tagged with a request id."""
        rid = (request_id or "").strip() or uuid.uuid4().hex[:12]
        return RunLogger(request_id=rid, session_id=self._session_id, _sink=self._sink)

    def info(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("INFO", event, url=url, **data)

    def warning(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("WARN", event, url=url, **data)

    def error(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("ERROR", event, url=url, **data)

    def exception(
        self,
        event: str,
        *,
        exc: BaseException,
        url: str | None = None,
        **data: Any,
    ) -> None:
        err = {
            "type": type(exc).__name__,
            "message": _truncate(str(exc), limit=2000),
            "traceback": _truncate(
                "".join(
                    traceback.format_exception(
                        type(exc), exc, exc.__traceback__
                    )
                ),
                limit=12000,
            ),
        }
        self.log("ERROR", event, url=url, error=err, **data)

    def log(self, level: str, event: str, *, url: str | None = None, **data: Any) -> None:
        lvl = (level or "").strip().upper() or "INFO"
        ev = (event or "").strip() or "event"

        record: dict[str, Any] = {
            "ts": _utc_now_iso(),
            "level": lvl,
            "event": ev,
            "session_id": self._session_id,
        }

        if self._request_id:
            record["request_id"] = self._request_id

        u = (url or "").strip()
        if u:
            record["url"] = u

        if data:
            record["data"] = data

        payload = json.dumps(
            record,
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        self._sink.write(payload)
