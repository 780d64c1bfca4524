from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from typing import Any, Sequence

import aiohttp

REQUEST_ID_HEADER = "x-request-id"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="metrics-proxy-cli")
    parser.add_argument(
        "--target",
        default="http://127.0.0.1:8080",
        help="metrics-proxy base URL",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=15.0,
        help="per-request timeout in seconds",
    )
    parser.add_argument(
        "--request-id",
        default=None,
        help="override request id sent as x-request-id",
    )
    parser.add_argument(
        "--show-request-id",
        action="store_true",
        help="print the server x-request-id response header to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    query_parser = subparsers.add_parser("query", help="run an instant query")
    query_parser.add_argument("query")
    query_parser.add_argument("--time", default=None, help="RFC 3339 or unix seconds")

    range_parser = subparsers.add_parser("range", help="run a range query")
    range_parser.add_argument("query")
    range_parser.add_argument("--start", default=None, help="RFC 3339 or unix seconds")
    range_parser.add_argument("--end", default=None, help="RFC 3339 or unix seconds")
    range_parser.add_argument("--step", default="60s", help="step, e.g. 30s, 5m or 60")

    validate_parser = subparsers.add_parser("validate", help="check a query")
    validate_parser.add_argument("query")

    alerts_parser = subparsers.add_parser("alerts", help="list alerts")
    alerts_parser.add_argument(
        "--view",
        choices=("list", "groups", "summary"),
        default="list",
    )
    alerts_parser.add_argument("--group-by", default="severity")

    subparsers.add_parser("metrics", help="list metric names")

    summary_parser = subparsers.add_parser("summary", help="summarise a metric")
    summary_parser.add_argument("metric")

    subparsers.add_parser("stats", help="print cache statistics as json")
    subparsers.add_parser("flush", help="drop every cached result")

    return parser


def _request_for(args: argparse.Namespace) -> tuple[str, str, dict[str, Any]]:
    """Return (method, path, options) for the selected sub-command."""
    if args.command == "query":
        params = {"query": args.query}
        if args.time:
            params["time"] = args.time
        return "GET", "/api/v1/query", {"params": params}
    if args.command == "range":
        body: dict[str, Any] = {"query": args.query, "step": args.step}
        if args.start:
            body["start"] = args.start
        if args.end:
            body["end"] = args.end
        return "POST", "/api/v1/query_range", {"json": body}
    if args.command == "validate":
        return "GET", "/api/v1/query/validate", {"params": {"query": args.query}}
    if args.command == "alerts":
        if args.view == "groups":
            return "GET", "/api/v1/alerts/groups", {"params": {"group_by": args.group_by}}
        if args.view == "summary":
            return "GET", "/api/v1/alerts/summary", {}
        return "GET", "/api/v1/alerts", {}
    if args.command == "metrics":
        return "GET", "/api/v1/metrics", {}
    if args.command == "summary":
        return "GET", f"/api/v1/metrics/{args.metric}/summary", {}
    if args.command == "stats":
        return "GET", "/api/v1/cache/stats", {}
    if args.command == "flush":
        return "DELETE", "/api/v1/cache", {}
    raise ValueError(f"unknown command: {args.command}")


async def run(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    request_id = args.request_id or uuid.uuid4().hex
    method, path, options = _request_for(args)
    url = f"{args.target.rstrip('/')}{path}"

    timeout = aiohttp.ClientTimeout(total=args.timeout)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.request(
                method, url, headers={REQUEST_ID_HEADER: request_id}, **options
            ) as response:
                response_request_id = response.headers.get(REQUEST_ID_HEADER)
                if args.show_request_id and response_request_id:
                    print(f"{REQUEST_ID_HEADER}={response_request_id}", file=sys.stderr)

                payload = await response.json(content_type=None)
                if response.status >= 400:
                    message = payload.get("error") if isinstance(payload, dict) else payload
                    print(f"request failed: HTTP {response.status}: {message}", file=sys.stderr)
                    return 2

                print(json.dumps(payload, indent=2))
                return 0
    except aiohttp.ClientError as exc:
        print(f"request failed: {exc}", file=sys.stderr)
        return 2
    except asyncio.TimeoutError:
        print(f"request failed: timed out after {args.timeout}s", file=sys.stderr)
        return 2
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


def main() -> None:
    raise SystemExit(asyncio.run(run()))


if __name__ == "__main__":
    main()
