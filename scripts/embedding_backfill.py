"""Trigger embedding generation on a running Huddle API."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

import httpx


logger = logging.getLogger(__name__)


def request_embeddings(
    client: httpx.Client, message_ids: list[str]
) -> list[dict[str, Any]]:
    """Embed the given messages, or backfill everything pending when none are given."""

    bodies: list[dict[str, Any]] = [{"messageId": message_id} for message_id in message_ids] or [{}]
    results = []
    for body in bodies:
        target = body.get("messageId", "all pending messages")
        response = client.post("/api/embeddings", json=body)
        if response.is_error:
            logger.error("embedding %s failed: %s %s", target, response.status_code, response.text)
            results.append({"target": target, "status": response.status_code})
            continue
        payload = response.json()
        logger.info(
            "embedded %s: %s processed, %s failed, %s file chunks",
            target,
            payload.get("processed"),
            payload.get("failed"),
            payload.get("chunks"),
        )
        results.append({"target": target, "status": response.status_code, **payload})
    return results


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("url", help="API base URL, e.g. http://localhost:8000")
    parser.add_argument("--token", required=True, help="Bearer token used for authentication")
    parser.add_argument(
        "--message-id",
        action="append",
        default=[],
        help="Embed only this message; repeat for several. Omit to backfill all pending messages",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=300.0,
        help="Request timeout in seconds; backfills can take a while",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit the results as JSON for machine processing",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log verbosity level",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    headers = {"Authorization": f"Bearer {args.token}"}
    try:
        with httpx.Client(base_url=args.url, headers=headers, timeout=args.timeout) as client:
            results = request_embeddings(client, args.message_id)
    except httpx.HTTPError as exc:
        logger.error("could not reach %s: %s", args.url, exc)
        return 1

    if args.json:
        print(json.dumps(results, indent=2, sort_keys=True))
    return 0 if all(result["status"] < 400 for result in results) else 1


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
