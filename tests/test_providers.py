from __future__ import annotations

import io
import json
import unittest
from typing import Any

import httpx

from post_lens.config_schema import FetchConfig
from post_lens.post import PostReference
from post_lens.post_url import parse_post_url
from post_lens.providers import (
    EmbedProvider,
    MirrorProvider,
    NotApplicable,
    Success,
    SyndicationProvider,
    TransientFailure,
    extract_syndication_text,
    handle_from_author_url,
)
from post_lens.run_log import RunLogger


class _FakeUpstream:
    """Serves queued responses (or raises queued exceptions) in call order."""

    def __init__(self, queue: list[Any]) -> None:
        self._queue = list(queue)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._queue:
            return httpx.Response(599, text="unexpected call")
        item = self._queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _ref(url: str = "https://twitter.com/alice/status/42") -> PostReference:
    return parse_post_url(url)


_SYNDICATION_SHORT = {
    "text": "Short post https://t.co/tail01",
    "user": {"name": "Alice", "screen_name": "alice"},
    "entities": {"urls": []},
}

_SYNDICATION_LONG = {
    "text": "Truncated version…",
    "user": {"name": "Alice", "screen_name": "alice"},
    "entities": {"urls": []},
    "note_tweet": {
        "note_tweet_results": {
            "result": {
                "text": "Long  post body\n\n\n\nread https://t.co/ext001 for details https://t.co/tail01",
                "entity_set": {
                    "urls": [
                        {"url": "https://t.co/ext001", "expanded_url": "https://example.org/article"}
                    ]
                },
            }
        }
    },
}


class TestMirrorProvider(unittest.IsolatedAsyncioTestCase):
    async def test_success_normalizes_text(self) -> None:
        upstream = _FakeUpstream(
            [
                httpx.Response(
                    200,
                    json={
                        "text": "  Hello   world\n\n\n\nsecond  ",
                        "user_name": "Alice",
                        "user_screen_name": "alice",
                    },
                )
            ]
        )
        async with upstream.client() as client:
            outcome = await MirrorProvider().attempt(_ref(), client=client)

        self.assertIsInstance(outcome, Success)
        assert isinstance(outcome, Success)
        self.assertEqual(outcome.post.text, "Hello world\n\nsecond")
        self.assertEqual(outcome.post.author_name, "Alice")
        self.assertEqual(outcome.post.author_handle, "@alice")
        self.assertEqual(outcome.post.tweet_url, "https://twitter.com/alice/status/42")

        req = upstream.requests[0]
        self.assertEqual(str(req.url), "https://api.vxtwitter.com/Twitter/status/42")
        self.assertIn("Mozilla/5.0", req.headers["user-agent"])
        self.assertEqual(req.headers["accept"], "application/json")

    async def test_missing_field_is_not_applicable(self) -> None:
        upstream = _FakeUpstream([httpx.Response(200, json={"text": "hi", "user_name": "A"})])
        async with upstream.client() as client:
            outcome = await MirrorProvider().attempt(_ref(), client=client)
        self.assertIsInstance(outcome, NotApplicable)

    async def test_bad_status_and_network_errors_are_transient(self) -> None:
        upstream = _FakeUpstream(
            [
                httpx.Response(500),
                httpx.ConnectError("refused"),
                httpx.ReadTimeout("slow"),
            ]
        )
        provider = MirrorProvider()
        async with upstream.client() as client:
            reasons = []
            for _ in range(3):
                outcome = await provider.attempt(_ref(), client=client)
                self.assertIsInstance(outcome, TransientFailure)
                assert isinstance(outcome, TransientFailure)
                reasons.append(outcome.reason)

        self.assertEqual(reasons, ["http_500", "network_error", "timeout"])
        self.assertEqual(len(upstream.requests), 3)

    async def test_uses_configured_base_url(self) -> None:
        upstream = _FakeUpstream([httpx.Response(404)])
        cfg = FetchConfig(mirror_base_url="https://mirror.test/")
        async with upstream.client() as client:
            await MirrorProvider(cfg).attempt(_ref(), client=client)
        self.assertEqual(str(upstream.requests[0].url), "https://mirror.test/Twitter/status/42")


class TestSyndicationProvider(unittest.IsolatedAsyncioTestCase):
    async def test_long_form_text_wins_and_links_are_resolved(self) -> None:
        upstream = _FakeUpstream([httpx.Response(200, json=_SYNDICATION_LONG)])
        async with upstream.client() as client:
            outcome = await SyndicationProvider(sleep_fn=_RecordingSleep()).attempt(
                _ref(), client=client
            )

        assert isinstance(outcome, Success)
        self.assertEqual(
            outcome.post.text,
            "Long post body\n\nread https://example.org/article for details",
        )
        self.assertEqual(outcome.post.author_handle, "@alice")

        req = upstream.requests[0]
        self.assertEqual(req.url.host, "cdn.syndication.twimg.com")
        self.assertEqual(req.url.path, "/tweet-result")
        self.assertEqual(dict(req.url.params), {"id": "42", "lang": "ja", "token": "x"})

    async def test_logs_which_text_rule_was_used(self) -> None:
        buf = io.StringIO()
        upstream = _FakeUpstream([httpx.Response(200, json=_SYNDICATION_LONG)])
        async with upstream.client() as client:
            await SyndicationProvider().attempt(
                _ref(), client=client, logger=RunLogger(stream=buf)
            )

        records = [json.loads(line) for line in buf.getvalue().splitlines()]
        selected = [r for r in records if r["event"] == "syndication_text_selected"]
        self.assertEqual(len(selected), 1)
        self.assertEqual(selected[0]["data"]["rule"], "note_tweet")
        self.assertEqual(selected[0]["url"], "https://x.com/alice/status/42")

    async def test_short_post_uses_top_level_text(self) -> None:
        upstream = _FakeUpstream([httpx.Response(200, json=_SYNDICATION_SHORT)])
        async with upstream.client() as client:
            outcome = await SyndicationProvider().attempt(_ref(), client=client)

        assert isinstance(outcome, Success)
        self.assertEqual(outcome.post.text, "Short post")
        self.assertEqual(outcome.post.author_name, "Alice")

    async def test_retries_rate_limit_with_linear_backoff(self) -> None:
        sleep = _RecordingSleep()
        upstream = _FakeUpstream(
            [
                httpx.Response(429),
                httpx.Response(429),
                httpx.Response(200, json=_SYNDICATION_SHORT),
            ]
        )
        async with upstream.client() as client:
            outcome = await SyndicationProvider(sleep_fn=sleep).attempt(_ref(), client=client)

        self.assertIsInstance(outcome, Success)
        self.assertEqual(len(upstream.requests), 3)
        self.assertEqual(sleep.delays, [1.0, 2.0])

    async def test_retry_after_header_does_not_change_backoff(self) -> None:
        sleep = _RecordingSleep()
        upstream = _FakeUpstream(
            [
                httpx.Response(429, headers={"Retry-After": "30"}),
                httpx.Response(429, headers={"Retry-After": "30"}),
                httpx.Response(200, json=_SYNDICATION_SHORT),
            ]
        )
        async with upstream.client() as client:
            outcome = await SyndicationProvider(sleep_fn=sleep).attempt(_ref(), client=client)

        self.assertIsInstance(outcome, Success)
        self.assertEqual(sleep.delays, [1.0, 2.0])

    async def test_rate_limit_exhaustion_is_transient(self) -> None:
        sleep = _RecordingSleep()
        upstream = _FakeUpstream([httpx.Response(429)] * 3)
        async with upstream.client() as client:
            outcome = await SyndicationProvider(sleep_fn=sleep).attempt(_ref(), client=client)

        self.assertEqual(outcome, TransientFailure("http_429"))
        self.assertEqual(len(upstream.requests), 3)

    async def test_network_error_consumes_a_retry_slot(self) -> None:
        sleep = _RecordingSleep()
        upstream = _FakeUpstream(
            [
                httpx.ConnectError("reset"),
                httpx.Response(200, json=_SYNDICATION_SHORT),
            ]
        )
        async with upstream.client() as client:
            outcome = await SyndicationProvider(sleep_fn=sleep).attempt(_ref(), client=client)

        self.assertIsInstance(outcome, Success)
        self.assertEqual(sleep.delays, [1.0])

    async def test_other_status_is_terminal_without_retry(self) -> None:
        sleep = _RecordingSleep()
        upstream = _FakeUpstream([httpx.Response(404), httpx.Response(200, json=_SYNDICATION_SHORT)])
        async with upstream.client() as client:
            outcome = await SyndicationProvider(sleep_fn=sleep).attempt(_ref(), client=client)

        self.assertEqual(outcome, TransientFailure("http_404"))
        self.assertEqual(len(upstream.requests), 1)
        self.assertEqual(sleep.delays, [])

    async def test_missing_user_is_not_applicable(self) -> None:
        upstream = _FakeUpstream([httpx.Response(200, json={"text": "orphan text"})])
        async with upstream.client() as client:
            outcome = await SyndicationProvider().attempt(_ref(), client=client)
        self.assertIsInstance(outcome, NotApplicable)

    async def test_empty_payload_is_not_applicable(self) -> None:
        upstream = _FakeUpstream([httpx.Response(200, json={"user": {"name": "A", "screen_name": "a"}})])
        async with upstream.client() as client:
            outcome = await SyndicationProvider().attempt(_ref(), client=client)
        self.assertIsInstance(outcome, NotApplicable)


class TestSyndicationTextRules(unittest.TestCase):
    def test_priority_order(self) -> None:
        found = extract_syndication_text({"text": "t", "full_text": "ft"})
        assert found is not None
        self.assertEqual(found[0], "full_text")
        self.assertEqual(found[1].text, "ft")

        found = extract_syndication_text(_SYNDICATION_LONG)
        assert found is not None
        self.assertEqual(found[0], "note_tweet")

        self.assertIsNone(extract_syndication_text({"text": "   "}))

    def test_long_form_without_entity_set_falls_back_to_top_level_entities(self) -> None:
        data = {
            "entities": {"urls": [{"url": "https://t.co/a", "expanded_url": "https://e.org"}]},
            "note_tweet": {"note_tweet_results": {"result": {"text": "long"}}},
        }
        found = extract_syndication_text(data)
        assert found is not None
        entities = list(found[1].entities or [])
        self.assertEqual([e.expanded_url for e in entities], ["https://e.org"])


class TestEmbedProvider(unittest.IsolatedAsyncioTestCase):
    async def test_extracts_text_and_handle(self) -> None:
        upstream = _FakeUpstream(
            [
                httpx.Response(
                    200,
                    json={
                        "html": '<blockquote><p>Hello <a href="https://t.co/x">world</a> &amp; friends</p></blockquote>',
                        "author_name": "Alice",
                        "author_url": "https://twitter.com/alice",
                    },
                )
            ]
        )
        ref = _ref("https://x.com/alice/status/42?s=20")
        async with upstream.client() as client:
            outcome = await EmbedProvider().attempt(ref, client=client)

        assert isinstance(outcome, Success)
        self.assertEqual(outcome.post.text, "Hello world & friends")
        self.assertEqual(outcome.post.author_handle, "@alice")
        self.assertEqual(outcome.post.author_name, "Alice")

        req = upstream.requests[0]
        self.assertEqual(req.url.host, "publish.twitter.com")
        self.assertEqual(req.url.params["url"], "https://x.com/alice/status/42?s=20")
        self.assertEqual(req.url.params["omit_script"], "true")

    async def test_missing_handle_is_empty_string(self) -> None:
        upstream = _FakeUpstream(
            [httpx.Response(200, json={"html": "<p>text</p>", "author_name": "A", "author_url": ""})]
        )
        async with upstream.client() as client:
            outcome = await EmbedProvider().attempt(_ref(), client=client)

        assert isinstance(outcome, Success)
        self.assertEqual(outcome.post.author_handle, "")

    async def test_missing_html_is_not_applicable(self) -> None:
        upstream = _FakeUpstream([httpx.Response(200, json={"author_name": "A"})])
        async with upstream.client() as client:
            outcome = await EmbedProvider().attempt(_ref(), client=client)
        self.assertIsInstance(outcome, NotApplicable)

    async def test_non_2xx_is_transient(self) -> None:
        upstream = _FakeUpstream([httpx.Response(403)])
        async with upstream.client() as client:
            outcome = await EmbedProvider().attempt(_ref(), client=client)
        self.assertEqual(outcome, TransientFailure("http_403"))

    def test_handle_from_author_url(self) -> None:
        self.assertEqual(handle_from_author_url("https://x.com/bob_99"), "@bob_99")
        self.assertEqual(handle_from_author_url("https://example.com/bob"), "")
        self.assertEqual(handle_from_author_url(None), "")


if __name__ == "__main__":
    unittest.main()
