import argparse
import sys
import time
from typing import Any, Dict, List, Optional

import httpx


DEFAULT_API_BASE = "http://127.0.0.1:8000"
ENDPOINT = "/api/mascot"


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def _print_answer(data: Dict[str, Any]) -> None:
    print(data.get("output") or "(no output)")
    sources = data.get("sources") or []
    if sources:
        print()
        print("Sources:")
        for src in sources:
            target = src.get("url") or (f"file {src['file_id']}" if src.get("file_id") else "")
            suffix = f" <{target}>" if target else ""
            print(f"- {src.get('title')}{suffix}")
    print()
    print(f"thread_id: {data.get('thread_id')}")


def _peek_until_done(
    client: httpx.Client,
    base: str,
    payload: Dict[str, Any],
    timeout_s: int,
    interval_s: float,
) -> Optional[httpx.Response]:
    start = time.time()
    while time.time() - start < timeout_s:
        time.sleep(interval_s)
        resp = client.post(_join_url(base, ENDPOINT), json=payload, timeout=90)
        if resp.status_code != 202:
            return resp
        print("Still thinking...", file=sys.stderr)
    return None


def run_chat(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    payload: Dict[str, Any] = {"message": args.message, "followup": args.followup}
    if args.thread_id:
        payload["thread_id"] = args.thread_id
    if args.category:
        payload["categoryLabel"] = args.category
    with httpx.Client() as client:
        resp = client.post(_join_url(base, ENDPOINT), json=payload, timeout=90)
        if resp.status_code == 202:
            thread_id = resp.json().get("thread_id")
            print(f"Reply pending on thread {thread_id}; peeking...", file=sys.stderr)
            peek_payload = {**payload, "peek": True, "thread_id": thread_id}
            resp = _peek_until_done(client, base, peek_payload, args.timeout, args.interval)
            if resp is None:
                print(f"Timed out waiting for a reply on thread {thread_id}.")
                return 2
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error")
            except ValueError:
                detail = resp.text
            print(f"Request failed: HTTP {resp.status_code}: {detail}")
            return 1
        _print_answer(resp.json())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mascot chat CLI")
    parser.add_argument("--base-url", default=DEFAULT_API_BASE, help="API base URL")
    subparsers = parser.add_subparsers(dest="command")

    chat = subparsers.add_parser("chat", help="Send one message to the mascot")
    chat.add_argument("message", help="User message")
    chat.add_argument("--thread-id", help="Continue an existing thread")
    chat.add_argument("--followup", action="store_true", help="Ask for the short follow-up format")
    chat.add_argument("--category", help="Explicit category label")
    chat.add_argument("--timeout", type=int, default=300, help="Max seconds to keep peeking")
    chat.add_argument("--interval", type=float, default=2.0, help="Seconds between peeks")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "chat":
        return run_chat(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
