"""`tera` - command-line client for the Tera answer server.

Run from source with:
  `python -m apps.cli.main --help`
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Sequence, TextIO

from apps.cli.client import DEFAULT_URL, HttpError, TeraClient
from apps.cli.output import format_table, print_json


class ContextFileError(ValueError):
    pass


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tera", description="Tera CLI (HTTP client)")
    p.add_argument(
        "--url",
        default=DEFAULT_URL,
        help="Server base URL (default: %(default)s)",
    )

    sub = p.add_subparsers(dest="command")

    ask = sub.add_parser("ask", help="Answer a question from saved content")
    ask.add_argument("question", help="Question to answer")
    ask.add_argument(
        "--context",
        help="JSON file with a list of {content, metadata} objects ('-' reads stdin)",
    )
    ask.add_argument(
        "--snippet",
        action="append",
        default=[],
        help="Inline context text (repeatable; added after --context items)",
    )
    ask.add_argument("--seed", type=int, help="Override the sampling seed")
    ask.add_argument("--temperature", type=float, help="Override the sampling temperature")
    ask.add_argument("--top-p", type=float, help="Override nucleus sampling threshold")
    ask.add_argument("--max-new-tokens", type=int, help="Override the generated token cap")
    ask.add_argument("--json", action="store_true", help="Machine-readable JSON output")

    health = sub.add_parser("health", help="Check server status")
    health.add_argument("--json", action="store_true", help="Machine-readable JSON output")

    models = sub.add_parser("models", help="List models known to the server")
    models.add_argument("--json", action="store_true", help="Machine-readable JSON output")
    return p


def load_context(path: str | None, snippets: Sequence[str], *, stdin: TextIO | None = None) -> list[dict[str, Any]]:
    """Read context items from a JSON file (or stdin) plus inline snippets."""
    items: list[dict[str, Any]] = []
    if path:
        try:
            if path == "-":
                data = json.load(stdin or sys.stdin)
            else:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
        except OSError as exc:
            raise ContextFileError(f"cannot read context file {path!r}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ContextFileError(f"context file {path!r} is not valid JSON: {exc}") from exc

        if not isinstance(data, list):
            raise ContextFileError("context must be a JSON list of {content, metadata} objects")
        for i, item in enumerate(data):
            if not isinstance(item, dict) or not isinstance(item.get("content"), str):
                raise ContextFileError(f"context item {i} must be an object with a string 'content'")
            items.append({"content": item["content"], "metadata": item.get("metadata")})

    for i, text in enumerate(snippets):
        items.append({"content": text, "metadata": {"source": "inline", "index": i}})
    return items


def _generation_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.temperature is not None:
        overrides["temperature"] = args.temperature if args.temperature > 0 else None
    if args.top_p is not None:
        overrides["top_p"] = args.top_p
    if args.max_new_tokens is not None:
        overrides["max_new_tokens"] = args.max_new_tokens
    return overrides


def cmd_ask(client: TeraClient, args: argparse.Namespace) -> int:
    try:
        context = load_context(args.context, args.snippet)
    except ContextFileError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    result = client.answer(args.question, context, generation=_generation_overrides(args) or None)
    if args.json:
        print_json(result)
    else:
        print(result["answer"])
    return 0


def cmd_health(client: TeraClient, args: argparse.Namespace) -> int:
    result = client.health()
    if args.json:
        print_json(result)
    else:
        state = "loaded" if result.get("loaded") else "not loaded"
        print(f"{result.get('status', '?')}: model={result.get('model')} ({state})")
    return 0


def cmd_models(client: TeraClient, args: argparse.Namespace) -> int:
    models = client.list_models()
    if args.json:
        print_json(models)
        return 0
    rows = [
        [str(m.get("id", "")), str(m.get("repo_id", "")), "*" if m.get("active") else ""]
        for m in models
    ]
    print(format_table(["MODEL", "REPO", "ACTIVE"], rows))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command
    if command is None:
        parser.print_help()
        return 2

    client = TeraClient(base_url=args.url)
    handlers = {"ask": cmd_ask, "health": cmd_health, "models": cmd_models}
    handler = handlers.get(command)
    if handler is None:
        parser.error(f"Unknown command: {command!r}")
        return 2
    try:
        return handler(client, args)
    except HttpError as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
