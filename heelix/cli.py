#!/usr/bin/env python3
"""
Heelix command line.

Usage:
    heelix init                                # create config, database and index
    heelix capture --user me notes.txt         # record an activity (text file or stdin)
    heelix edit-doc 12 draft.md --force        # replace a document's text, re-index it
    heelix tag-doc 12 3                        # add document 12 to project 3
    heelix retrieve "quarterly planning" -k 5  # similarity search
    heelix ask "What did I plan for Q3?"       # grounding block for the chat engine
    heelix reconcile --prune                   # index pending records, drop dangling entries
    heelix stats
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape

from .app import Application
from .core.config import Config
from .exceptions import HeelixError, RecordNotFoundError, RetrievalError
from .formatter import RecallFormatter

logger = logging.getLogger(__name__)


def setup_logging(config: Config, verbose: bool = False) -> None:
    """File log under <home>/logs plus stderr"""
    log_dir = config.get_log_directory()
    log_dir.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if verbose else getattr(
        logging, str(config.get("log_level", default="INFO")).upper(), logging.INFO
    )
    stream_handler = logging.StreamHandler()
    # Keep the terminal quiet unless asked; the file gets everything
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_dir / 'heelix.log'),
            stream_handler,
        ]
    )


def _read_text(source: Optional[str]) -> str:
    """Text from a file path, or stdin when source is None or '-'"""
    if source is None or source == "-":
        return sys.stdin.read()
    return Path(source).expanduser().read_text(encoding="utf-8")


def _print_json(console: Console, data) -> None:
    console.print_json(json.dumps(data, default=str))


# === Commands ===

async def cmd_init(app: Application, args, fmt: RecallFormatter) -> int:
    config = app.config
    fmt.console.print(f"[green]✓[/green] Config:   {config.config_dir}")
    fmt.console.print(f"[green]✓[/green] Database: {config.get_database_path()}")
    if app.index.is_open:
        fmt.console.print(f"[green]✓[/green] Index:    {config.get_index_directory()}")
    else:
        fmt.console.print(f"[red]✗[/red] Index:    {config.get_index_directory()} (see log)")
        return 1
    if not config.get_openai_api_key():
        fmt.console.print(
            "[yellow]No OpenAI API key configured.[/yellow] Set OPENAI_API_KEY or "
            f"openai_api_key in {config.vectorization_file}"
        )
    return 0


async def cmd_capture(app: Application, args, fmt: RecallFormatter) -> int:
    text = _read_text(args.file)
    result = await app.orchestrator.record_activity(
        args.user, text, interval_length=args.interval, window_title=args.title
    )
    if result is None:
        fmt.console.print("[dim]Nothing recorded (no user id)[/dim]")
        return 0
    fmt.console.print(fmt.format_vectorization(result))
    return 0


async def cmd_history(app: Application, args, fmt: RecallFormatter) -> int:
    activities = await asyncio.to_thread(app.store.list_activity_history, args.offset, args.limit)
    fmt.console.print(fmt.format_history(activities))
    return 0


async def cmd_projects(app: Application, args, fmt: RecallFormatter) -> int:
    projects = await asyncio.to_thread(app.store.list_projects)
    fmt.console.print(fmt.format_projects(projects))
    return 0


async def cmd_project_create(app: Application, args, fmt: RecallFormatter) -> int:
    project_id = await asyncio.to_thread(app.store.create_project, args.name, args.activities or ())
    fmt.console.print(f"[green]✓[/green] Created project {project_id}")
    return 0


async def cmd_project_delete(app: Application, args, fmt: RecallFormatter) -> int:
    document_ids = await app.delete_project(args.project_id)
    fmt.console.print(
        f"[green]✓[/green] Deleted project {args.project_id} ({len(document_ids)} documents)"
    )
    return 0


async def cmd_new_doc(app: Application, args, fmt: RecallFormatter) -> int:
    document_id = await asyncio.to_thread(app.store.add_blank_document, args.project)
    fmt.console.print(f"[green]✓[/green] Created document {document_id}")
    return 0


async def cmd_edit_doc(app: Application, args, fmt: RecallFormatter) -> int:
    text = _read_text(args.file)
    result = await app.orchestrator.update_document_text(args.document_id, text, force=args.force)
    fmt.console.print(fmt.format_vectorization(result))
    return 0


async def cmd_rename_doc(app: Application, args, fmt: RecallFormatter) -> int:
    await asyncio.to_thread(app.store.rename_document, args.document_id, args.name)
    fmt.console.print(f"[green]✓[/green] Renamed document {args.document_id}")
    return 0


async def cmd_move_doc(app: Application, args, fmt: RecallFormatter) -> int:
    await asyncio.to_thread(app.store.move_document, args.document_id, args.project)
    fmt.console.print(f"[green]✓[/green] Moved document {args.document_id}")
    return 0


async def cmd_delete_doc(app: Application, args, fmt: RecallFormatter) -> int:
    if not await app.delete_document(args.document_id):
        raise RecordNotFoundError("document", args.document_id)
    fmt.console.print(f"[green]✓[/green] Deleted document {args.document_id}")
    return 0


async def cmd_delete_activity(app: Application, args, fmt: RecallFormatter) -> int:
    if not await app.delete_activity(args.activity_id):
        raise RecordNotFoundError("activity", args.activity_id)
    fmt.console.print(f"[green]✓[/green] Deleted activity {args.activity_id}")
    return 0


async def cmd_tag_doc(app: Application, args, fmt: RecallFormatter) -> int:
    result = await app.tag_document(args.document_id, args.project_id)
    if result is None:
        fmt.console.print(
            f"[dim]Document {args.document_id} is already in project {args.project_id}[/dim]"
        )
        return 0
    fmt.console.print(f"[green]✓[/green] Tagged document {args.document_id} with project {args.project_id}")
    fmt.console.print(fmt.format_vectorization(result))
    return 0


async def cmd_untag_doc(app: Application, args, fmt: RecallFormatter) -> int:
    removed = await app.untag_document(args.document_id, args.project_id)
    if not removed:
        fmt.console.print(
            f"[dim]Document {args.document_id} is not in project {args.project_id}[/dim]"
        )
        return 0
    fmt.console.print(
        f"[green]✓[/green] Removed document {args.document_id} from project {args.project_id}"
    )
    return 0


async def cmd_doc_projects(app: Application, args, fmt: RecallFormatter) -> int:
    if await asyncio.to_thread(app.store.get_document, args.document_id) is None:
        raise RecordNotFoundError("document", args.document_id)
    project_ids = await asyncio.to_thread(app.store.get_document_projects, args.document_id)
    fmt.console.print(", ".join(str(i) for i in project_ids))
    return 0


async def cmd_doc_meta(app: Application, args, fmt: RecallFormatter) -> int:
    if args.set is not None:
        if args.key is None:
            fmt.console.print("[red]Error:[/red] --set needs a key")
            return 1
        await asyncio.to_thread(
            app.store.set_document_metadata, args.document_id, args.key, args.set
        )
        fmt.console.print(f"[green]✓[/green] Set {escape(args.key)} on document {args.document_id}")
        return 0

    metadata = await asyncio.to_thread(
        app.store.get_document_metadata, args.document_id, args.key
    )
    _print_json(fmt.console, metadata)
    return 0


async def cmd_retrieve(app: Application, args, fmt: RecallFormatter) -> int:
    items = await app.retriever.retrieve(args.query, args.k)
    if args.json:
        _print_json(fmt.console, [item.to_dict() for item in items])
    elif not items:
        fmt.console.print(f'[dim]No relevant records found for: "{escape(args.query)}"[/dim]')
    else:
        fmt.console.print(fmt.format_results(args.query, items))
    return 0


async def cmd_ask(app: Application, args, fmt: RecallFormatter) -> int:
    context = await app.retriever.build_context(args.question, args.k)
    if not context:
        fmt.console.print(f'[dim]No relevant content found for: "{escape(args.question)}"[/dim]')
        return 0
    # Plain output, meant for piping into a prompt
    print(context)
    return 0


async def cmd_reconcile(app: Application, args, fmt: RecallFormatter) -> int:
    if args.limit is not None:
        stats = {"pending": await app.reconciler.reconcile_pending(limit=args.limit)}
        if args.prune:
            stats["prune"] = await app.reconciler.prune_dangling()
    else:
        stats = await app.reconciler.run_once(prune=args.prune)
    fmt.console.print(fmt.format_reconcile(stats))
    return 0


async def cmd_stats(app: Application, args, fmt: RecallFormatter) -> int:
    stats = await app.retriever.get_stats()
    if args.json:
        _print_json(fmt.console, stats)
    else:
        fmt.console.print(fmt.format_stats(stats))
    return 0


COMMANDS = {
    "init": cmd_init,
    "capture": cmd_capture,
    "history": cmd_history,
    "projects": cmd_projects,
    "project-create": cmd_project_create,
    "project-delete": cmd_project_delete,
    "new-doc": cmd_new_doc,
    "edit-doc": cmd_edit_doc,
    "rename-doc": cmd_rename_doc,
    "move-doc": cmd_move_doc,
    "delete-doc": cmd_delete_doc,
    "delete-activity": cmd_delete_activity,
    "tag-doc": cmd_tag_doc,
    "untag-doc": cmd_untag_doc,
    "doc-projects": cmd_doc_projects,
    "doc-meta": cmd_doc_meta,
    "retrieve": cmd_retrieve,
    "ask": cmd_ask,
    "reconcile": cmd_reconcile,
    "stats": cmd_stats,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="heelix",
        description="Heelix Recall - capture, vectorize and search your activity.",
    )
    parser.add_argument("--home", help="Heelix home directory (default: $HEELIX_HOME or ~/.heelix)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging to the terminal")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init", help="Create config, database and vector index")

    p_capture = subparsers.add_parser("capture", help="Record a captured activity")
    p_capture.add_argument("file", nargs="?", help="Text file ('-' or omitted = stdin)")
    p_capture.add_argument("--user", required=True, help="Owning user id")
    p_capture.add_argument("--title", help="Window title")
    p_capture.add_argument("--interval", type=int, help="Capture interval in seconds")

    p_history = subparsers.add_parser("history", help="List captured activities")
    p_history.add_argument("--offset", type=int, default=0)
    p_history.add_argument("--limit", type=int, default=20)

    subparsers.add_parser("projects", help="List projects and their documents")

    p_create = subparsers.add_parser("project-create", help="Create a project")
    p_create.add_argument("name")
    p_create.add_argument("--activities", type=int, nargs="+",
                          help="Activity ids to copy in as documents")

    p_pdelete = subparsers.add_parser("project-delete", help="Delete a project and its documents")
    p_pdelete.add_argument("project_id", type=int)

    p_new = subparsers.add_parser("new-doc", help="Create a blank document")
    p_new.add_argument("--project", type=int, help="Project id (default: Unassigned)")

    p_edit = subparsers.add_parser("edit-doc", help="Replace a document's text")
    p_edit.add_argument("document_id", type=int)
    p_edit.add_argument("file", nargs="?", help="Text file ('-' or omitted = stdin)")
    p_edit.add_argument("--force", action="store_true", help="Re-index even if already indexed")

    p_rename = subparsers.add_parser("rename-doc", help="Rename a document")
    p_rename.add_argument("document_id", type=int)
    p_rename.add_argument("name")

    p_move = subparsers.add_parser("move-doc", help="Move a document to another project")
    p_move.add_argument("document_id", type=int)
    p_move.add_argument("--project", type=int, help="Target project id (default: Unassigned)")

    p_ddelete = subparsers.add_parser("delete-doc", help="Delete a document")
    p_ddelete.add_argument("document_id", type=int)

    p_adelete = subparsers.add_parser("delete-activity", help="Delete a captured activity")
    p_adelete.add_argument("activity_id", type=int)

    p_tag = subparsers.add_parser("tag-doc", help="Add a document to another project")
    p_tag.add_argument("document_id", type=int)
    p_tag.add_argument("project_id", type=int)

    p_untag = subparsers.add_parser("untag-doc", help="Remove a document from a project")
    p_untag.add_argument("document_id", type=int)
    p_untag.add_argument("project_id", type=int)

    p_docprojects = subparsers.add_parser("doc-projects", help="Projects holding a document")
    p_docprojects.add_argument("document_id", type=int)

    p_meta = subparsers.add_parser("doc-meta", help="Show or set document metadata")
    p_meta.add_argument("document_id", type=int)
    p_meta.add_argument("key", nargs="?", help="Single key to show or set")
    p_meta.add_argument("--set", metavar="VALUE", help="Set KEY to VALUE")

    p_retrieve = subparsers.add_parser("retrieve", help="Similarity search")
    p_retrieve.add_argument("query")
    p_retrieve.add_argument("-k", type=int, help="Number of results (default: retrieval_default_k)")
    p_retrieve.add_argument("--json", action="store_true", help="Output as JSON")

    p_ask = subparsers.add_parser("ask", help="Print a grounding block for a question")
    p_ask.add_argument("question")
    p_ask.add_argument("-k", type=int, help="Number of results (default: retrieval_default_k)")

    p_reconcile = subparsers.add_parser("reconcile", help="Index pending records")
    p_reconcile.add_argument("--prune", action="store_true", help="Also drop dangling index entries")
    p_reconcile.add_argument("--limit", type=int, help="Max records per kind")

    p_stats = subparsers.add_parser("stats", help="Index and store statistics")
    p_stats.add_argument("--json", action="store_true", help="Output as JSON")

    return parser


async def _run(args, config: Config, console: Console) -> int:
    handler = COMMANDS[args.command]
    fmt = RecallFormatter(console)
    app = await Application.create(config, start_background=False)
    async with app:
        try:
            return await handler(app, args, fmt)
        except RecordNotFoundError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            return 1
        except RetrievalError as e:
            console.print(f"[red]Retrieval unavailable:[/red] {escape(str(e))}")
            return 1


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = Config(Path(args.home).expanduser() if args.home else None)
    setup_logging(config, verbose=args.verbose)
    console = Console()

    try:
        return asyncio.run(_run(args, config, console))
    except HeelixError as e:
        logger.error(f"{args.command} failed: {e}")
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
