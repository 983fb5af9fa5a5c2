"""
Rich formatter for the Heelix command line.

Renders retrieval results, vectorization outcomes, projects, activity
history and index statistics.
"""

from typing import Any, Dict, List, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich import box
from rich.markup import escape

from .core.models import ActivityRecord, Project
from .rag.retriever import RetrievedItem
from .rag.vectorizer import VectorizationResult, VectorizationStatus


# Status styling for vectorization outcomes
STATUS_STYLES = {
    VectorizationStatus.INDEXED: "[green]✓ indexed[/green]",
    VectorizationStatus.TOO_SHORT: "[dim]○ too short[/dim]",
    VectorizationStatus.ALREADY_VECTORIZED: "[dim]◎ already indexed[/dim]",
    VectorizationStatus.DISABLED: "[dim]○ vectorization disabled[/dim]",
    VectorizationStatus.MISSING_CREDENTIAL: "[yellow]○ no API key configured[/yellow]",
    VectorizationStatus.EMBEDDING_FAILED: "[yellow]◐ embedding failed[/yellow]",
    VectorizationStatus.INDEX_UNAVAILABLE: "[yellow]◐ index unavailable[/yellow]",
    VectorizationStatus.INDEX_FAILED: "[red bold]✗ index error[/red bold]",
    VectorizationStatus.FLAG_DRIFT: "[yellow]◐ indexed, flag not saved[/yellow]",
}

PREVIEW_CHARS = 160


def _preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[:limit - 1] + "…"


def _score_style(score: float) -> str:
    if score >= 0.8:
        return "green bold"
    if score >= 0.5:
        return "yellow"
    return "dim"


class RecallFormatter:
    """
    Rich-based formatter for CLI output.

    Args:
        console: Rich Console instance (creates default if not provided)
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def format_vectorization(self, result: VectorizationResult) -> Text:
        line = Text.from_markup(f"{result.tag.key}  {STATUS_STYLES[result.status]}")
        if result.detail and not result.indexed:
            line.append(f"  ({result.detail})", style="dim")
        return line

    def format_results(self, query: str, items: List[RetrievedItem]) -> Table:
        """
        Create table of retrieval results.

        Args:
            query: The query text (used as the title)
            items: Items in index order

        Returns:
            Rich Table with one row per item
        """
        table = Table(
            title=f'Results for "{escape(_preview(query, 60))}"',
            box=box.SIMPLE_HEAD,
            show_lines=False,
        )
        table.add_column("#", justify="right", style="dim", width=3)
        table.add_column("Score", justify="right", width=6)
        table.add_column("Record", no_wrap=True)
        table.add_column("Title")
        table.add_column("Text", ratio=1)

        for i, item in enumerate(items, 1):
            style = _score_style(item.score)
            table.add_row(
                str(i),
                f"[{style}]{item.score * 100:.0f}%[/{style}]",
                f"{item.record_kind.value}:{item.record_id}",
                escape(item.title) if item.title else "[dim]---[/dim]",
                escape(_preview(item.text)),
            )
        return table

    def format_projects(self, projects: List[Project]) -> Table:
        table = Table(title="Projects", box=box.SIMPLE_HEAD)
        table.add_column("ID", justify="right", style="dim")
        table.add_column("Name", style="bold")
        table.add_column("Documents", justify="right")
        table.add_column("Names")

        for project in projects:
            name = f"[dim]{escape(project.name)}[/dim]" if project.is_unassigned else escape(project.name)
            names = escape(", ".join(project.document_names[:5]))
            if len(project.document_names) > 5:
                names += f" [dim]+{len(project.document_names) - 5} more[/dim]"
            table.add_row(str(project.id), name, str(len(project.document_ids)), names)
        return table

    def format_history(self, activities: List[ActivityRecord]) -> Table:
        table = Table(title="Activity history", box=box.SIMPLE_HEAD)
        table.add_column("ID", justify="right", style="dim")
        table.add_column("When", no_wrap=True)
        table.add_column("Window")
        table.add_column("Chars", justify="right")
        table.add_column("Indexed", justify="center")

        for activity in activities:
            when = activity.created_at.strftime("%Y-%m-%d %H:%M") if activity.created_at else "---"
            table.add_row(
                str(activity.id),
                when,
                escape(activity.display_name),
                str(len(activity.full_text)),
                "[green]✓[/green]" if activity.vectorized else "[dim]○[/dim]",
            )
        return table

    def format_stats(self, stats: Dict[str, Any]) -> Panel:
        """
        Create panel with index and store statistics.

        Args:
            stats: Output of Retriever.get_stats()
        """
        table = Table(box=None, show_header=True, padding=(0, 2))
        table.add_column("Kind")
        table.add_column("Records", justify="right")
        table.add_column("Vectorized", justify="right")

        for kind, counts in stats.get("by_kind", {}).items():
            table.add_row(kind, str(counts.get("total", 0)), str(counts.get("vectorized", 0)))

        indexed = stats.get("indexed_entries")
        footer = Text()
        footer.append("\nIndex entries: ", style="dim")
        footer.append("unavailable" if indexed is None else str(indexed),
                      style="red" if indexed is None else "bold")
        footer.append("\nVectorization: ", style="dim")
        footer.append("on" if stats.get("vectorization_enabled") else "off")
        footer.append("\nAPI key: ", style="dim")
        footer.append("configured" if stats.get("credential_configured") else "missing",
                      style=None if stats.get("credential_configured") else "yellow")

        return Panel(
            Group(table, footer),
            title="[bold]Heelix Recall[/bold]",
            border_style="blue",
            padding=(0, 2),
        )

    def format_reconcile(self, stats: Dict[str, Any]) -> Panel:
        pending = stats.get("pending", {})
        lines = Text()
        lines.append(f"Attempted: {pending.get('attempted', 0)}\n", style="bold")
        for status, count in sorted(pending.get("by_status", {}).items()):
            lines.append(f"  {status}: {count}\n")
        prune = stats.get("prune")
        if prune is not None:
            if prune.get("success"):
                lines.append(f"Pruned {prune['removed']} of {prune['checked']} index entries")
            else:
                lines.append(f"Prune skipped: {prune.get('error')}", style="red")
        return Panel(lines, title="[bold]Reconcile[/bold]", border_style="blue", padding=(0, 2))
