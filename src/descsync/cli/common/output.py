"""Output formatting utilities for the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import questionary
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

from descsync.cli.common.tui_style import QUESTIONARY_STYLE_CONFIRM

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)

_OUTCOME_STYLE = {
    "UPDATED": "ok",
    "SKIPPED": "meta",
    "FAILED": "err",
}


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def _q(self, message: str) -> str:
        """Prefix Questionary prompts so they stand out from log lines."""
        return f"[descsync] {message}"

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {msg}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {msg}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        console.print(f"[warn]⚠[/] {msg}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        console.print(f"[err]✗[/] {msg}")

    def header(self, title: str) -> None:
        """Print a header message."""
        console.print(f"[title]{title}[/]")

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs."""
        for k, v in items.items():
            console.print(f"[meta]{k}[/]: {escape(str(v))}")

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """
        Ask the user for confirmation using a standardized Questionary prompt.

        Args:
            message: Confirmation question shown to the user.
            default: Default answer if the user just presses enter.

        Returns:
            True if the user confirms, False otherwise.
        """
        console.print("[meta]Use y/n then Enter[/]")
        prompt = questionary.confirm(
            self._q(message),
            default=default,
            style=QUESTIONARY_STYLE_CONFIRM,
            qmark="✦",
            auto_enter=False,
        )
        return bool(prompt.ask())

    def assets_table(self, assets: Iterable[Any], title: str = "Assets") -> None:
        """
        Render catalog assets.

        Expects objects with .physical_name .id .object_type .is_lost
        .description (like descsync.core.assets.CatalogAsset).
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Name", style="ok")
        t.add_column("Type", style="meta")
        t.add_column("ID", style="meta", no_wrap=True)
        t.add_column("Description")
        t.add_column("Lost")

        for a in assets:
            t.add_row(
                escape(str(getattr(a, "physical_name", ""))),
                str(getattr(a, "object_type", "")),
                str(getattr(a, "id", "")),
                "yes" if getattr(a, "description", "") else "[meta]-[/]",
                "[warn]yes[/]" if getattr(a, "is_lost", False) else "no",
            )

        console.print(t)

    def reconcile_results_table(
        self, results: Iterable[Any], title: str = "Reconcile results"
    ) -> None:
        """
        Render per-entity reconciliation results.

        Expects objects with .level .key .outcome .reason .dry_run
        (like descsync.core.reconcile.EntityResult).
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Level", style="meta")
        t.add_column("Entity", style="ok")
        t.add_column("Outcome")
        t.add_column("Reason", style="meta")

        for r in results:
            outcome = getattr(r.outcome, "value", str(r.outcome))
            style = _OUTCOME_STYLE.get(outcome, "meta")
            label = f"{outcome} (dry-run)" if getattr(r, "dry_run", False) else outcome
            level = getattr(r.level, "value", str(r.level))
            t.add_row(level, escape(r.key), f"[{style}]{label}[/{style}]", escape(r.reason or ""))

        console.print(t)

    def reconcile_summary_table(self, summary: Any, title: str | None = None) -> None:
        """Render outcome counts per level for one ReconcileSummary."""
        from descsync.core.reconcile import Level, Outcome

        t = Table(title=title or f"Summary: {summary.system}", show_lines=False)
        t.add_column("Level", style="meta")
        for outcome in Outcome:
            t.add_column(outcome.value.capitalize(), justify="right")

        for level in Level:
            t.add_row(
                level.value,
                *(str(summary.count(outcome, level)) for outcome in Outcome),
            )

        console.print(t)


out = Out()
