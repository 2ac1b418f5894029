"""Console reporting of migration progress."""

from typing import TYPE_CHECKING, Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from cms_migrator.core.orchestrator import MigrationSummary


class MigrationReporter:
    """Prints phase and transfer progress for the operator."""

    def __init__(self, console: Optional[Console] = None) -> None:
        """Initialize reporter.

        Args:
            console: Rich console for output
        """
        self.console = console or Console()
        self.category_counts: Dict[str, int] = {}

    def phase_started(self, phase: str, detail: str = "") -> None:
        """Announce the start of a phase."""
        suffix = f" [dim]{escape(detail)}[/dim]" if detail else ""
        self.console.print(f"[bold blue]▶ {phase}[/bold blue]{suffix}")

    def phase_completed(self, phase: str, detail: str = "") -> None:
        """Announce the end of a phase."""
        suffix = f" [dim]{escape(detail)}[/dim]" if detail else ""
        self.console.print(f"[bold green]✓ {phase}[/bold green]{suffix}")

    def transfer_started(self, category: str, source_kind: str, source: str) -> None:
        """Announce a transfer unit.

        Args:
            category: Category being copied
            source_kind: ``folder`` or ``container``
            source: Source folder path or container name
        """
        self.console.print(escape(f"Begin copy {category} from {source_kind} {source}"))

    def transfer_completed(self, category: str, source_kind: str, source: str, count: int) -> None:
        """Report the object count of a finished transfer unit."""
        self.category_counts[category] = self.category_counts.get(category, 0) + count
        self.console.print(
            escape(f"End copy {category} from {source_kind} {source}. Processed : {count}")
        )

    def container_deleted(self, container: str) -> None:
        """Report a container removed during reset."""
        self.console.print(f"  [yellow]✗[/yellow] Deleted container {escape(container)}")

    def error(self, message: str) -> None:
        """Surface a fatal error to the operator."""
        self.console.print(f"[bold red]{escape(message)}[/bold red]")

    def print_summary(self, summary: "MigrationSummary") -> None:
        """Render the final summary table.

        Args:
            summary: Result of the orchestrator run
        """
        table = Table(title="Migration Summary", show_header=True)
        table.add_column("Phase", style="cyan")
        table.add_column("Source", style="yellow")
        table.add_column("Category", style="magenta")
        table.add_column("Container", style="yellow")
        table.add_column("Objects", style="green", justify="right")

        for phase in summary.phases:
            for result in phase.results:
                if not result.count:
                    continue
                table.add_row(
                    phase.name,
                    escape(result.source),
                    result.category.value,
                    result.container,
                    str(result.count),
                )

        self.console.print()
        self.console.print(table)
        self.console.print(f"  • State: {summary.state.value}")
        self.console.print(f"  • Containers deleted: {summary.containers_deleted}")
        self.console.print(f"  • Database rows deleted: {summary.records_deleted}")
        for category, count in sorted(self.category_counts.items()):
            self.console.print(f"  • {category} objects: {count}")
        self.console.print(f"  • Total objects: {summary.total_objects}")
        self.console.print(f"  • Duration: {summary.duration_seconds:.1f} seconds")
