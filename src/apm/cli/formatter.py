# src/apm/cli/formatter.py
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from apm.core.models import FlakeInput, InstallReport, PackageRecord, RebuildResult

console = Console()

STATUS_STYLES = {
    "ADDED": "green",
    "MODIFIED": "green",
    "FOUND": "green",
    "ALREADY_PRESENT": "yellow",
    "ALREADY_INSTALLED": "yellow",
    "NO_BLOCK": "dim",
    "CANCELLED": "red",
    "NOT_FOUND": "red",
    "INDEX_MISSING": "red",
    "IO_ERROR": "red",
}

STATUS_MESSAGES = {
    "MODIFIED": "Installed {package}.",
    "ALREADY_INSTALLED": "{package} already installed.",
    "ALREADY_PRESENT": "{package} already present in every block.",
    "CANCELLED": "Installation cancelled.",
    "NOT_FOUND": "Package '{package}' not found.",
    "INDEX_MISSING": "No local database found! Generate it with 'apm makecache'",
    "NO_BLOCK": "No file with '{block}' block found.",
}


class ApmFormatter:
    """
    ApmFormatter: turns engine results into tables and panels.
    Holds no state besides the console it prints to.
    """

    def __init__(self, out: Optional[Console] = None):
        self.console = out or console

    def _styled(self, status: str) -> str:
        color = STATUS_STYLES.get(status, "white")
        return f"[{color}]{status}[/{color}]"

    def print_packages(self, records: List[PackageRecord], title: str):
        if not records:
            self.console.print("[yellow]No packages found.[/yellow]")
            return
        table = Table(title=title, show_header=True, header_style="bold magenta")
        table.add_column("Name", style="cyan")
        table.add_column("Version")
        table.add_column("Description", overflow="fold")
        for record in records:
            table.add_row(escape(record.name), escape(record.version or "-"), escape(record.description))
        self.console.print(table)

    def print_installed(self, scans: List[Dict[str, Any]], block_label: str):
        """One row per entry, grouped by file; unreadable files are listed last."""
        table = Table(title=f"Installed ({block_label})", show_header=True, header_style="bold magenta")
        table.add_column("Entry", style="cyan")
        table.add_column("File", style="dim")
        count = 0
        for scan in scans:
            for entry in scan["entries"]:
                table.add_row(escape(entry), escape(scan["file_path"]))
                count += 1
        if count:
            self.console.print(table)
        else:
            self.console.print(f"[yellow]Nothing installed in '{block_label}'.[/yellow]")
        for scan in scans:
            if scan["status"] == "IO_ERROR":
                self.console.print(f"[bold red]Could not read {escape(scan['file_path'])}:[/bold red] {escape(scan['error'])}")

    def print_install_report(self, report: InstallReport, summary: Dict[str, Any]):
        for warning in report.warnings:
            self.console.print(f"[bold yellow]Warning:[/bold yellow] {escape(warning)}")

        if report.bootstrapped:
            self.console.print(f"[green]Created {escape(report.bootstrapped)}[/green]")

        if report.files:
            table = Table(title="APM Install Report", show_lines=True, header_style="bold magenta")
            table.add_column("File Path", style="cyan")
            table.add_column("Status", style="bold")
            table.add_column("Error")
            for f in report.files:
                table.add_row(escape(f["file_path"]), self._styled(f["status"]), escape(f.get("error") or ""))
            self.console.print(table)

        message = STATUS_MESSAGES.get(report.status, report.status).format(
            package=escape(report.package), block=report.method.block_label)
        color = STATUS_STYLES.get(report.status, "white")
        self.console.print(f"[bold {color}]{message}[/bold {color}]")

        if report.suggestions:
            self.print_packages(report.suggestions, "Did you mean")

        if report.files:
            self.console.print(Panel(
                f"[bold white]Summary Report[/bold white]\n"
                f"════════════════════════════════════════\n"
                f"Entry:           {escape(report.entry or '')}\n"
                f"Method:          {summary['method']}\n"
                f"Files Scanned:   {summary['files_scanned']}\n"
                f"Added:          [green]{summary['files_added']}[/green]\n"
                f"Already Present: {summary['files_already_present']}\n"
                f"File Errors:    [red]{summary['file_errors']}[/red]",
                border_style="dim"
            ))

    def print_inputs(self, inputs: List[FlakeInput]):
        if not inputs:
            self.console.print("[yellow]No inputs declared.[/yellow]")
            return
        table = Table(title="Flake Inputs", show_header=True, header_style="bold magenta")
        table.add_column("Name", style="cyan")
        table.add_column("Kind")
        table.add_column("Target")
        for flake_input in inputs:
            table.add_row(escape(flake_input.name), flake_input.kind, escape(flake_input.target))
        self.console.print(table)

    def print_modules(self, modules: List[str]):
        self.console.print("[bold white]Available Input Modules:[/bold white]")
        for module in modules:
            self.console.print(f"- {escape(module)}")

    def print_rebuild(self, result: RebuildResult, db_path: str):
        for error in result.errors:
            self.console.print(f"[red]{escape(error)}[/red]")
        self.console.print(Panel(
            f"Packages Indexed: [green]{result.count}[/green]\n"
            f"Errors:           [red]{len(result.errors)}[/red]\n"
            f"Database:         {db_path}",
            title="[bold white]Cache Rebuilt[/bold white]",
            border_style="dim"
        ))
