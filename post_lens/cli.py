from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Sequence

from pydantic import ValidationError

from .config import load_config
from .errors import ConfigError, InvalidUrlError, PostNotFoundError
from .resolver import PostResolver
from .run_log import RunLogger
from .search import SearchParams, build_search_command, build_search_url


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="post_lens")

    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser(
        "fetch",
        help="Resolve a post URL to its text and author.",
    )
    fetch.add_argument("url", help="Post URL (x.com, twitter.com, or a mirror host).")
    fetch.add_argument(
        "--config",
        default=None,
        help="Path to YAML config file (defaults are used when omitted).",
    )
    fetch.add_argument(
        "--log",
        default=None,
        help="Write JSONL resolver events to this file.",
    )
    fetch.set_defaults(_handler=_cmd_fetch)

    search = subparsers.add_parser(
        "search",
        help="Build an advanced search command and its search URL.",
    )
    search.add_argument("--keyword", required=True)
    search.add_argument("--min-faves", type=int, default=None)
    search.add_argument("--min-retweets", type=int, default=None)
    search.add_argument("--since", default=None, help="YYYY-MM-DD")
    search.add_argument("--until", default=None, help="YYYY-MM-DD")
    search.add_argument("--lang", default=None)
    search.set_defaults(_handler=_cmd_search)

    serve = subparsers.add_parser(
        "serve",
        help="Run the JSON HTTP service.",
    )
    serve.add_argument("--config", default=None, help="Path to YAML config file.")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(_handler=_cmd_serve)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _cmd_fetch(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)

    if args.log:
        with RunLogger.open(args.log, overwrite=False) as log:
            resolver = PostResolver(fetch_cfg=cfg.fetch, logger=log)
            post = asyncio.run(resolver.resolve(args.url))
    else:
        resolver = PostResolver(fetch_cfg=cfg.fetch)
        post = asyncio.run(resolver.resolve(args.url))

    print(json.dumps(post.to_payload(), indent=2, ensure_ascii=False))
    return 0


def _cmd_search(args: argparse.Namespace) -> int:
    try:
        params = SearchParams(
            keyword=args.keyword,
            min_faves=args.min_faves,
            min_retweets=args.min_retweets,
            since_date=args.since,
            until_date=args.until,
            lang=args.lang,
        )
    except ValidationError as e:
        _eprint(f"Invalid search parameters: {e}")
        return 2

    command = build_search_command(params)
    print(f"command={command}")
    print(f"url={build_search_url(command)}")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app

    cfg = load_config(args.config)
    app = create_app(cfg)

    uvicorn.run(
        app,
        host=args.host or cfg.server.host,
        port=args.port or cfg.server.port,
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except (ConfigError, InvalidUrlError) as e:
        _eprint(str(e))
        return 2
    except PostNotFoundError as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
