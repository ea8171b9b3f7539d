"""Forward archived task-completion events to monitoring-friendly output."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Iterable

from agentify_mcp.config import AgentifySettings
from agentify_mcp.storage import ArchiveUnavailableError, CompletionRecord, EventArchive


def load_archive(settings: AgentifySettings) -> EventArchive:
    """Construct an EventArchive using the provided settings."""

    return EventArchive(settings.chroma_persist_path)


def _normalize_completions(
    records: Iterable[CompletionRecord],
    *,
    trigger: str | None = None,
) -> list[dict[str, object]]:
    items = [record.to_dict() for record in records if trigger is None or record.trigger == trigger]
    items.sort(key=lambda item: item["completed_at"])
    return items


_DETAIL_KEYS = {
    "idle_timeout": "timeoutMs",
    "file_analysis": "file",
    "process_completion": "exitCode",
    "manual": "reason",
}


def _default_formatter(item: dict[str, object]) -> str:
    details = item.get("details") or {}
    reason = details.get(_DETAIL_KEYS.get(item["trigger"], "reason"))
    return " | ".join(
        [
            f"client={item['client_id']}",
            f"trigger={item['trigger']}",
            f"detail={reason}",
            f"timestamp={item['completed_at']}",
        ]
    )


def forward_completions(args: argparse.Namespace, *, formatter=_default_formatter) -> int:
    settings = AgentifySettings()
    try:
        archive = load_archive(settings)
        records = archive.list_completions(client_id=args.client_id)
    except ArchiveUnavailableError as exc:
        print(f"Chroma unavailable: {exc}", file=sys.stderr)
        return 1

    payload = _normalize_completions(records, trigger=args.trigger)
    if args.limit is not None and args.limit > 0:
        payload = payload[-args.limit :]
    if args.format == "json":
        output_text = json.dumps(payload, indent=2)
    else:
        output_text = "\n".join(formatter(item) for item in payload)

    if args.output:
        Path(args.output).write_text(output_text, encoding="utf-8")
    else:
        print(output_text)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Forward archived task completions to stdout or a file for monitoring integrations."
    )
    parser.add_argument("--client-id", help="Only include completions for this client", default=None)
    parser.add_argument(
        "--trigger",
        choices={"idle_timeout", "file_analysis", "manual", "process_completion"},
        default=None,
        help="Only include completions detected by this trigger",
    )
    parser.add_argument(
        "--format",
        choices={"json", "text"},
        default="json",
        help="Output format (default: json)",
    )
    parser.add_argument("--output", help="Optional path to write the payload to")
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, emit only the latest N completions after filtering",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    exit_code = forward_completions(args)
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
