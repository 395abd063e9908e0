"""Command line interface: export, stats, validate, tree and watch."""
from __future__ import annotations

import argparse
import asyncio
import errno
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from snatch import config
from snatch.analytics import ConversationStatistics, compute_statistics
from snatch.date_utils import format_duration, format_human
from snatch.errors import (
    EXIT_GENERAL_ERROR,
    EXIT_INTERRUPTED,
    EXIT_PARSE_ERROR,
    EXIT_SUCCESS,
    SnatchError,
    SnatchIOError,
)
from snatch.export import (
    EXPORT_FORMATS,
    Traversal,
    export_conversation,
    export_to_path,
    format_for_path,
    load_export_defaults,
)
from snatch.observability import initialize, shutdown
from snatch.parsers.jsonl import ParseResult, ParseStats, parse_transcript
from snatch.reconstruction.conversation import Conversation, build_conversation
from snatch.watcher import SessionWatcher

logger = logging.getLogger("snatch.cli")

PREVIEW_WIDTH = 60


def _load(path: Path, strict: bool) -> tuple[ParseResult, Conversation]:
    result = parse_transcript(path, lenient=False if strict else None)
    return result, build_conversation(result.entries, source=str(path))


def _preview(entry) -> str:
    text = " ".join(entry.text.split())
    if not text:
        names = [b.name for b in entry.tool_uses()]
        if names:
            text = "tool: " + ", ".join(names)
        elif entry.tool_results():
            text = "tool result"
    if len(text) > PREVIEW_WIDTH:
        text = text[: PREVIEW_WIDTH - 3] + "..."
    return text


# ── export ──────────────────────────────────────────────────────────

def cmd_export(args: argparse.Namespace) -> int:
    defaults = load_export_defaults(args.config)
    options = defaults.merged(
        include_thinking=True if args.thinking else None,
        include_metadata=True if args.metadata else None,
        include_tool_results=False if args.no_tool_results else None,
        plain_text=True if args.plain else None,
        pretty=True if args.pretty else None,
        envelope=False if args.no_envelope else None,
        html_title=args.title,
        html_dark_theme=True if args.dark else None,
        traversal=args.traversal,
    )
    fmt = args.format or (format_for_path(args.output) if args.output else None) or "markdown"
    result, conversation = _load(args.file, args.strict)
    if args.output:
        target = export_to_path(conversation, fmt, args.output, options, parse_stats=result.stats)
        print(f"Wrote {target}", file=sys.stderr)
    else:
        sink = sys.stdout.buffer
        export_conversation(conversation, fmt, sink, options, parse_stats=result.stats)
        sink.flush()
    return EXIT_SUCCESS


# ── stats ───────────────────────────────────────────────────────────

def _print_stats(stats: ConversationStatistics, parse: ParseStats) -> None:
    counts = stats.message_counts
    usage = stats.token_usage
    print(f"Records: {counts.total} ({counts.user} user, {counts.assistant} assistant, "
          f"{counts.system} system, {counts.summary} summary, {counts.unknown} unknown)")
    print(f"Lines: {parse.lines_processed} processed, {parse.lines_skipped} skipped, "
          f"{parse.empty_lines} empty ({parse.success_rate:.1f}% success)")
    if stats.time_span is not None:
        print(f"Time span: {format_human(stats.time_span.start)} -> {format_human(stats.time_span.end)} "
              f"({format_duration(stats.duration_seconds)})")
    print(f"Main thread: {stats.main_thread_length} records, max depth {stats.max_depth}")
    print(f"Branch points: {stats.branch_count}, sidechain records: {stats.sidechain_count}")
    print(f"Tool uses: {stats.tool_uses}, tool results: {stats.tool_results_total} "
          f"({'balanced' if stats.tools_balanced else 'unbalanced'})")
    for name, count in stats.tool_counts.items():
        print(f"    {name}: {count}")
    print(f"Assistant messages: {stats.assistant_messages} (from {counts.assistant} records)")
    print(f"Thinking blocks: {stats.thinking_blocks}")
    if stats.retry_chains:
        print(f"API retries: {stats.api_retries} in {stats.retry_chains} chains, "
              f"{stats.retry_recoveries} recovered")
    print(f"Tokens: {usage.total_tokens} total ({usage.input_tokens} input, {usage.output_tokens} output, "
          f"{usage.cache_creation_input_tokens} cache write, {usage.cache_read_input_tokens} cache read)")
    if stats.primary_model:
        print(f"Primary model: {stats.primary_model}")
    if stats.duplicate_uuids or stats.orphan_parents:
        print(f"Issues: {stats.duplicate_uuids} duplicate uuids, {stats.orphan_parents} orphan parents")
    if stats.overflow:
        print("Warning: some totals saturated at 2^64-1")


def cmd_stats(args: argparse.Namespace) -> int:
    result, conversation = _load(args.file, args.strict)
    stats = compute_statistics(conversation)
    if args.json:
        payload = {"parse": result.stats.to_dict(), "statistics": stats.to_dict()}
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        _print_stats(stats, result.stats)
    return EXIT_SUCCESS


# ── validate ────────────────────────────────────────────────────────

def cmd_validate(args: argparse.Namespace) -> int:
    result = parse_transcript(args.file, lenient=False if args.strict else None)
    stats = result.stats
    print(f"File: {args.file}")
    print(f"Schema version: {stats.schema_version or 'unknown'}")
    print(f"Lines processed: {stats.lines_processed}")
    print(f"Entries parsed: {stats.entries_parsed}")
    print(f"Lines skipped: {stats.lines_skipped}")
    print(f"Empty lines: {stats.empty_lines}")
    print(f"Success rate: {stats.success_rate:.1f}%")
    for issue in stats.errors[: max(0, args.show_errors)]:
        print(f"  {issue}")
        if issue.preview:
            print(f"    {issue.preview}")
    hidden = stats.error_count - min(len(stats.errors), max(0, args.show_errors))
    if hidden > 0:
        print(f"  ... and {hidden} more")
    return EXIT_PARSE_ERROR if stats.lines_skipped else EXIT_SUCCESS


# ── tree ────────────────────────────────────────────────────────────

def render_outline(conversation: Conversation) -> list[str]:
    """Indented outline; indentation grows only below branch points."""
    main = set(conversation.main_thread)
    branch_points = set(conversation.branch_points)
    lines: list[str] = []
    stack = [(uuid, 0) for uuid in reversed(conversation.roots)]
    while stack:
        uuid, level = stack.pop()
        entry = conversation.get(uuid)
        marker = "*" if uuid in main else "-"
        flags = []
        if uuid in branch_points:
            flags.append("branch")
        if conversation.is_sidechain(uuid):
            flags.append("sidechain")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        preview = _preview(entry)
        lines.append(f"{'  ' * level}{marker} {entry.role} {uuid[:8]}{suffix}" + (f": {preview}" if preview else ""))
        children = conversation.children_of(uuid)
        child_level = level + 1 if len(children) >= 2 else level
        stack.extend((child, child_level) for child in reversed(children))
    for entry in conversation.detached:
        lines.append(f"~ {entry.role} (detached)")
    return lines


def cmd_tree(args: argparse.Namespace) -> int:
    _, conversation = _load(args.file, args.strict)
    for line in render_outline(conversation):
        print(line)
    return EXIT_SUCCESS


# ── watch ───────────────────────────────────────────────────────────

def _report_change(path: Path, result: Optional[ParseResult], conversation: Optional[Conversation]) -> None:
    if result is None:
        print(f"{path.name}: removed", flush=True)
        return
    if conversation is None:
        print(f"{path.name}: {result.stats.entries_parsed} entries, no conversation records", flush=True)
        return
    print(
        f"{path.name}: {result.stats.entries_parsed} entries, {result.stats.lines_skipped} skipped, "
        f"main thread {len(conversation.main_thread)}, branches {conversation.branch_count}",
        flush=True,
    )


def cmd_watch(args: argparse.Namespace) -> int:
    if not args.path.exists():
        raise SnatchIOError.from_os_error(FileNotFoundError(errno.ENOENT, "No such file or directory"), args.path)
    watcher = SessionWatcher(_report_change, debounce_ms=args.debounce, lenient=not args.strict)
    asyncio.run(watcher.run(args.path))
    return EXIT_SUCCESS


# ── entry point ─────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="snatch", description="Inspect and export Claude Code transcripts.")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="only log warnings and errors")
    parser.add_argument("--config", type=Path, default=None, help="settings file with export defaults")
    sub = parser.add_subparsers(dest="command", required=True)

    export = sub.add_parser("export", help="render a transcript")
    export.add_argument("file", type=Path)
    export.add_argument("-f", "--format", choices=EXPORT_FORMATS + ("md", "txt"), default=None)
    export.add_argument("-o", "--output", type=Path, default=None)
    export.add_argument("--thinking", action="store_true", help="include thinking blocks")
    export.add_argument("--metadata", action="store_true", help="include session metadata")
    export.add_argument("--no-tool-results", action="store_true")
    export.add_argument("--plain", action="store_true", help="no markdown syntax")
    export.add_argument("--pretty", action="store_true", help="indent JSON output")
    export.add_argument("--no-envelope", action="store_true", help="JSON array of records only")
    export.add_argument("--title", default=None)
    export.add_argument("--dark", action="store_true", help="dark HTML theme")
    export.add_argument("--traversal", choices=[t.value for t in Traversal], default=None)
    export.add_argument("--strict", action="store_true", help="fail on the first malformed line")
    export.set_defaults(handler=cmd_export)

    stats = sub.add_parser("stats", help="conversation statistics")
    stats.add_argument("file", type=Path)
    stats.add_argument("--json", action="store_true")
    stats.add_argument("--strict", action="store_true")
    stats.set_defaults(handler=cmd_stats)

    validate = sub.add_parser("validate", help="check that every line decodes")
    validate.add_argument("file", type=Path)
    validate.add_argument("--strict", action="store_true")
    validate.add_argument("--show-errors", type=int, default=10)
    validate.set_defaults(handler=cmd_validate)

    tree = sub.add_parser("tree", help="outline of the conversation tree")
    tree.add_argument("file", type=Path)
    tree.add_argument("--strict", action="store_true")
    tree.set_defaults(handler=cmd_tree)

    watch = sub.add_parser("watch", help="re-parse a transcript or directory on change")
    watch.add_argument("path", type=Path)
    watch.add_argument("--debounce", type=int, default=None, help="milliseconds")
    watch.add_argument("--strict", action="store_true")
    watch.set_defaults(handler=cmd_watch)
    return parser


def _log_level(args: argparse.Namespace) -> str:
    if args.verbose:
        return "DEBUG"
    if args.quiet:
        return "WARNING"
    return config.LOG_LEVEL


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, _log_level(args), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    initialize()
    try:
        return args.handler(args)
    except SnatchError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except BrokenPipeError:
        return EXIT_GENERAL_ERROR
    finally:
        shutdown()


if __name__ == "__main__":
    sys.exit(main())
