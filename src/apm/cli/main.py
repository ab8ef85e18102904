#!/usr/bin/env python3
"""
APM CLI - Command Surface
-------------------------
Translates `apm <command>` invocations into engine, index and settings
calls. Settings and the flake root are resolved once here and handed to
the engine; every confirmation prompt of a run goes through `_confirm`.

Author: APM Team
Date: 2026-10-17
"""

import sys
import logging
import argparse
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from apm.cli.formatter import ApmFormatter
from apm.config.settings import Settings, load_settings, read_flake_location, write_flake_location
from apm.core.engine import InstallEngine
from apm.core.errors import ApmError
from apm.core.models import InstallationMethod, SectionStatus, determine_method
from apm.index.channels import ChannelDiscovery
from apm.index.flathub import FlathubClient
from apm.index.store import PackageIndex
from apm.system import commands

VERSION = "0.1.0"

console = Console()

FAILED_INSTALL = {"NOT_FOUND", "INDEX_MISSING", "NO_BLOCK"}


class ApmCLI:
    """
    CLI wrapper that routes subcommands to the engine and renders results.
    `-y` turns every confirmation into an automatic yes.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings
        self.formatter = ApmFormatter(console)
        self.assume_yes = False
        self.parser = argparse.ArgumentParser(
            prog="apm",
            description="APM - declarative package manager for NixOS flake configurations",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self._setup_args()

    def _add_method_flags(self, parser: argparse.ArgumentParser):
        for method in InstallationMethod:
            default = " (default)" if method is InstallationMethod.PER_USER_PROFILE else ""
            parser.add_argument(f"--{method.flag}", action="store_true",
                                help=f"Use {method.display_name} ({method.block_label}){default}")

    def _setup_args(self):
        self.parser.add_argument("-v", "--version", action="version", version=f"apm v{VERSION}")
        subparsers = self.parser.add_subparsers(dest="command", metavar="Command")

        add_parser = subparsers.add_parser("add", help="Add a package to the configuration")
        add_parser.add_argument("name", help="Package name or Flatpak app id")
        self._add_method_flags(add_parser)
        add_parser.add_argument("--unstable", action="store_true", help="Take the package from nixos-unstable")
        add_parser.add_argument("--exact", action="store_true", help="Use the name verbatim, no fuzzy resolution")
        add_parser.add_argument("-y", "--yes", action="store_true", help="Answer yes to every confirmation")

        search_parser = subparsers.add_parser("search", help="Search the package index or Flathub")
        search_parser.add_argument("query", help="Search term")
        self._add_method_flags(search_parser)

        list_parser = subparsers.add_parser("list", help="List installed packages")
        self._add_method_flags(list_parser)

        location_parser = subparsers.add_parser("set-location", help="Set the flake configuration directory")
        location_parser.add_argument("path", help="Directory holding flake.nix")

        subparsers.add_parser("makecache", help="Rebuild the local package index")
        subparsers.add_parser("removecache", help="Delete the local package index")

        input_parser = subparsers.add_parser("add-input", help="Add an input to flake.nix")
        input_parser.add_argument("name", help="Input name")
        input_parser.add_argument("url", nargs="?", default="", help="Input URL (optional for known inputs)")
        input_parser.add_argument("-y", "--yes", action="store_true", help="Answer yes to every confirmation")

        subparsers.add_parser("list-inputs", help="List inputs declared in flake.nix")
        subparsers.add_parser("list-modules", help="Suggest modules exposed by the declared inputs")
        subparsers.add_parser("show-version", help="Show the pinned nixpkgs release")

        update_version_parser = subparsers.add_parser("update-version", help="Pin nixpkgs to the latest release")
        update_version_parser.add_argument("-y", "--yes", action="store_true", help="Answer yes to every confirmation")

        subparsers.add_parser("update", help="Run 'nix flake update' in the flake directory")
        subparsers.add_parser("rebuild-system", help="Run 'nixos-rebuild switch' on the flake")

    def print_header(self, subtitle: str):
        console.print(Panel.fit(
            f"[bold cyan]APM v{VERSION}[/bold cyan]",
            title=f"[bold white]{subtitle}[/bold white]",
            border_style="cyan"
        ))

    def _confirm(self, prompt: str) -> bool:
        console.print(f"[bold]{escape(prompt)}[/bold]")
        if self.assume_yes:
            return True
        choice = console.input("[bold yellow]Proceed? (y/N): [/bold yellow]")
        return choice.strip().lower() == "y"

    def _method(self, args: argparse.Namespace) -> InstallationMethod:
        try:
            return determine_method(flatpak=args.flatpak, nix_env=args.nix_env, home_manager=args.home_manager)
        except ValueError as e:
            self.parser.error(str(e))

    def _engine(self) -> InstallEngine:
        return InstallEngine(
            read_flake_location(self.settings),
            PackageIndex(self.settings.index_path),
            FlathubClient(self.settings.flathub_url, self.settings.flathub_timeout),
            self._confirm,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def cmd_add(self, args: argparse.Namespace, method: InstallationMethod) -> int:
        engine = self._engine()
        report = engine.install(args.name, method, unstable=args.unstable, exact=args.exact)
        self.formatter.print_install_report(report, engine.generate_summary(report))
        return 1 if report.status in FAILED_INSTALL else 0

    def cmd_search(self, args: argparse.Namespace, method: InstallationMethod) -> int:
        if method is InstallationMethod.SANDBOXED_APP:
            flathub = FlathubClient(self.settings.flathub_url, self.settings.flathub_timeout)
            records = flathub.search(args.query)
            title = f"Flathub results for '{escape(args.query)}'"
        else:
            records = PackageIndex(self.settings.index_path).search(args.query)
            title = f"nixpkgs results for '{escape(args.query)}'"
        self.formatter.print_packages(records, title)
        return 0

    def cmd_list(self, args: argparse.Namespace, method: InstallationMethod) -> int:
        scans = self._engine().scan_block(method)
        self.formatter.print_installed(scans, method.block_label)
        return 0

    def cmd_set_location(self, args: argparse.Namespace) -> int:
        location = write_flake_location(self.settings, args.path)
        console.print(f"[green]Flake location set to {escape(str(location))}[/green]")
        if not (location / "flake.nix").exists():
            console.print(f"[bold yellow]Warning:[/bold yellow] no flake.nix in {escape(str(location))}")
        return 0

    def cmd_makecache(self, args: argparse.Namespace) -> int:
        index = PackageIndex(self.settings.index_path)
        with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                      TimeElapsedColumn(), console=console) as progress:
            task_id = progress.add_task("Running nix search...", total=None)
            records = commands.nix_search_all()
            progress.update(task_id, description=f"Indexing {len(records)} packages...")
            result = index.rebuild(records)
        self.formatter.print_rebuild(result, str(index.path))
        return 0

    def cmd_removecache(self, args: argparse.Namespace) -> int:
        index = PackageIndex(self.settings.index_path)
        if index.remove():
            console.print(f"[green]Removed {escape(str(index.path))}[/green]")
        else:
            console.print("[yellow]No local database found.[/yellow]")
        return 0

    def cmd_add_input(self, args: argparse.Namespace) -> int:
        status = self._engine().add_input(args.name, args.url)
        if status is SectionStatus.ADDED:
            console.print(f"[green]Added input '{escape(args.name)}'.[/green]")
        elif status is SectionStatus.ALREADY_PRESENT:
            console.print(f"[yellow]Input '{escape(args.name)}' already exists.[/yellow]")
        else:
            console.print("[bold red]Operation cancelled.[/bold red]")
        return 0

    def cmd_list_inputs(self, args: argparse.Namespace) -> int:
        self.formatter.print_inputs(self._engine().list_inputs())
        return 0

    def cmd_list_modules(self, args: argparse.Namespace) -> int:
        self.formatter.print_modules(self._engine().list_modules())
        return 0

    def cmd_show_version(self, args: argparse.Namespace) -> int:
        console.print(f"nixpkgs version: [bold cyan]{escape(self._engine().nixpkgs_version())}[/bold cyan]")
        return 0

    def cmd_update_version(self, args: argparse.Namespace) -> int:
        engine = self._engine()
        latest = ChannelDiscovery(timeout=self.settings.version_timeout).latest_version()
        current, written = engine.update_nixpkgs_version(latest)
        if written:
            console.print(f"[green]Updated nixpkgs from {current or 'unknown'} to {latest}.[/green]")
        elif current == latest:
            console.print(f"[yellow]nixpkgs is already at {latest}.[/yellow]")
        elif current == "unstable":
            console.print("[yellow]nixpkgs is pinned to unstable; not updating.[/yellow]")
        else:
            console.print("[bold red]Operation cancelled.[/bold red]")
        return 0

    def cmd_update(self, args: argparse.Namespace) -> int:
        return commands.update_flake(read_flake_location(self.settings))

    def cmd_rebuild_system(self, args: argparse.Namespace) -> int:
        return commands.rebuild_system(read_flake_location(self.settings))

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Primary routing entry point; returns the process exit code."""
        argv = sys.argv[1:] if argv is None else argv
        if not argv:
            self.print_header("Package Manager")
            self.parser.print_help()
            return 0

        args = self.parser.parse_args(argv)
        # method flags are validated before settings, network or disk are touched
        method = self._method(args) if hasattr(args, "flatpak") else None
        self.assume_yes = getattr(args, "yes", False)

        if self.settings is None:
            self.settings = load_settings()
        logging.basicConfig(level=getattr(logging, self.settings.log_level, logging.WARNING),
                            format="%(levelname)s %(name)s: %(message)s")

        handler = getattr(self, f"cmd_{(args.command or '').replace('-', '_')}", None)
        if handler is None:
            self.parser.print_help()
            return 2
        try:
            return handler(args, method) if method is not None else handler(args)
        except ApmError as e:
            console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            return 1


def main():
    """Application entry point with interrupt handling."""
    try:
        sys.exit(ApmCLI().run())
    except KeyboardInterrupt:
        console.print("\n[bold red]Terminated by user.[/bold red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
