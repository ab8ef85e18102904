#!/usr/bin/env python3
"""
APM ENGINE - The Install Orchestrator
-------------------------------------
Drives one `apm add` from a package name to edited configuration files:

  ResolvingPackage -> CheckingInstalled -> CheckingPrerequisite
      -> ConfirmingInstall -> BootstrappingFile (optional) -> Inserting

Every terminal state is recorded on an InstallReport. Nothing is written
before the install confirmation, and nothing at all when the package is
unknown or already installed. Flake-level helpers (inputs, modules and the
pinned nixpkgs release) live here too so the CLI talks to a single object.

Edits are atomic per file only. If a run is interrupted after editing some
files of the tree, those files keep their edits.

Author: APM Team
Date: 2026-10-17
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from apm.core.errors import ApmError, IndexMissingError, NotFoundError, RemoteUnavailableError
from apm.core.models import FlakeInput, InstallationMethod, InstallReport, SectionStatus
from apm.editing.block import BlockEditor, app_id_match, exact_match, label_in_code, split_lines
from apm.editing.section import (
    FLATPAK_INPUT,
    HOME_MANAGER_INPUT,
    UNSTABLE_INPUT,
    UNSTABLE_URL,
    SectionEditor,
    input_declared,
    list_inputs,
    read_nixpkgs_version,
    replace_nixpkgs_version,
    suggest_input_modules,
)
from apm.editing.textfile import atomic_write, list_nix_files, read_text

logger = logging.getLogger("apm.engine")

Confirm = Callable[[str], bool]

HOME_MANAGER_MODULE = "inputs.home-manager.nixosModules.home-manager"
FLATPAK_MODULE = "flatpaks.nixosModules.nix-flatpak"

BOILERPLATES = {
    InstallationMethod.SYSTEM_WIDE: (
        "\n{ config, pkgs, ... }:\n{\n  environment.systemPackages = [\n\n  ];\n}\n\n"
    ),
    InstallationMethod.PER_USER_PROFILE: (
        "\n\n{ config, pkgs, ... }:\n\n{\n  home.packages = [ \n    \n  ];\n  \n}\n"
    ),
    InstallationMethod.SANDBOXED_APP: (
        "\n{ config, pkgs, ... }:\n\n{\n  services.flatpak.packages = [\n\n  ];\n}\n\n\n\n"
    ),
}


def build_entry(name: str, method: InstallationMethod, unstable: bool = False) -> str:
    """
    Text of the block entry for `name`. nixpkgs names get a `pkgs.` or
    `unstable.` prefix unless they already carry one; Flatpak ids become
    an attribute set pinned to the flathub remote.
    """
    if method is InstallationMethod.SANDBOXED_APP:
        return f'{{ appId = "{name}"; origin = "flathub"; }}'
    if unstable:
        return name if name.startswith("unstable.") else f"unstable.{name}"
    if name.startswith("pkgs.") or name.startswith("unstable."):
        return name
    return f"pkgs.{name}"


def entry_matches(entry: str, name: str, method: InstallationMethod) -> bool:
    """Whether an existing block entry already installs `name`."""
    entry = entry.strip()
    if method is InstallationMethod.SANDBOXED_APP:
        return name in entry or f'appId = "{name}"' in entry
    return entry in (name, f"pkgs.{name}", f"unstable.{name}")


class InstallEngine:
    """
    Orchestrates installs against one flake root. The package index, the
    Flathub client and the confirmation callback are injected so the CLI
    decides how prompts look and tests can answer them.
    """

    def __init__(self, flake_root: Path, index, flathub, confirm: Confirm):
        self.flake_root = Path(flake_root)
        self.index = index
        self.flathub = flathub
        self.confirm = confirm
        self.blocks = BlockEditor()
        self.sections = SectionEditor(confirm)

    @property
    def flake_path(self) -> Path:
        return self.flake_root / "flake.nix"

    def nix_files(self) -> List[Path]:
        if not self.flake_root.is_dir():
            raise ApmError(f"Flake location {self.flake_root} does not exist; run 'apm set-location <path>'")
        return list_nix_files(self.flake_root)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def scan_block(self, method: InstallationMethod) -> List[Dict[str, Any]]:
        """One dict per .nix file: file_path, status (FOUND/NO_BLOCK/IO_ERROR), entries, error."""
        reports = []
        for path in self.nix_files():
            try:
                entries = self.blocks.read_entries(path, method.block_label)
                reports.append({"file_path": str(path), "status": "FOUND", "entries": entries, "error": None})
            except NotFoundError:
                reports.append({"file_path": str(path), "status": "NO_BLOCK", "entries": [], "error": None})
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable file {path}: {e}")
                reports.append({"file_path": str(path), "status": "IO_ERROR", "entries": [], "error": str(e)})
        return reports

    def list_installed(self, method: InstallationMethod) -> List[str]:
        return [entry for report in self.scan_block(method) for entry in report["entries"]]

    def has_block(self, method: InstallationMethod) -> bool:
        """True when any .nix file of the tree mentions the method's block label outside a comment."""
        for path in self.nix_files():
            try:
                if any(label_in_code(line, method.block_label) for line in split_lines(read_text(path))):
                    return True
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable file {path}: {e}")
        return False

    def is_installed(self, name: str, method: InstallationMethod) -> bool:
        return any(entry_matches(entry, name, method) for entry in self.list_installed(method))

    # ------------------------------------------------------------------
    # Install state machine
    # ------------------------------------------------------------------

    def install(self, name: str, method: InstallationMethod, unstable: bool = False,
                exact: bool = False) -> InstallReport:
        report = InstallReport(package=name, method=method)

        if not self._resolve(report, exact):
            return report

        if self.is_installed(report.package, method):
            logger.info(f"{report.package} already installed via {method.display_name}")
            report.status = "ALREADY_INSTALLED"
            return report

        if unstable and method.uses_nixpkgs:
            self.ensure_unstable_input(report)

        if not self.confirm(f"About to install '{report.package}' ({method.display_name})"):
            report.status = "CANCELLED"
            return report

        report.entry = build_entry(report.package, method, unstable)

        if not self.has_block(method):
            logger.info(f"No file defines '{method.block_label}'. Creating one...")
            created = self.bootstrap(method, report.warnings)
            report.bootstrapped = str(created) if created else None

        for path in self.nix_files():
            report.files.append(self._insert_into(path, method, report.entry))

        report.status = self._derive_status(report.files)
        if report.status == "NO_BLOCK":
            logger.warning(f"No file with '{method.block_label}' block found.")
        return report

    def _resolve(self, report: InstallReport, exact: bool) -> bool:
        """Settles the concrete package name; False means a terminal status was set."""
        if report.method is InstallationMethod.SANDBOXED_APP:
            try:
                app_id = self.flathub.resolve(report.package, exact=exact)
            except RemoteUnavailableError as e:
                logger.error(str(e))
                report.warnings.append(str(e))
                app_id = None
            if app_id is None:
                report.status = "NOT_FOUND"
                return False
            report.package = app_id
            return True

        try:
            if self.index.exists(report.package):
                return True
            report.status = "NOT_FOUND"
            if not exact:
                report.suggestions = self.index.search(report.package)
        except IndexMissingError as e:
            report.status = "INDEX_MISSING"
            report.warnings.append(str(e))
        return False

    def ensure_unstable_input(self, report: Optional[InstallReport] = None) -> SectionStatus:
        try:
            if input_declared(read_text(self.flake_path), UNSTABLE_INPUT):
                return SectionStatus.ALREADY_PRESENT
            status = self.sections.add_input(self.flake_path, UNSTABLE_INPUT, UNSTABLE_URL)
        except OSError as e:
            raise ApmError(f"Error setting up unstable input: {e}") from e

        if status is SectionStatus.CANCELLED:
            warning = "Unstable input not added. Package installation may fail."
            logger.warning(warning)
            if report is not None:
                report.warnings.append(warning)
        return status

    def bootstrap(self, method: InstallationMethod, warnings: Optional[List[str]] = None) -> Optional[Path]:
        """
        Creates packages/<file> with the method's boilerplate and registers
        it in flake.nix. Returns the new file, or None if the user declined.
        HomeManager and Flatpak first get their flake input and module.
        """
        warnings = warnings if warnings is not None else []
        if not self.flake_path.is_file():
            raise ApmError(f"flake.nix not found in {self.flake_root} (is your system flaked?)")

        packages_dir = self.flake_root / "packages"
        if method is InstallationMethod.PER_USER_PROFILE:
            self._ensure_flake_wiring(HOME_MANAGER_INPUT, HOME_MANAGER_MODULE, warnings)
        elif method is InstallationMethod.SANDBOXED_APP:
            self._ensure_flake_wiring(FLATPAK_INPUT, FLATPAK_MODULE, warnings)

        target = packages_dir / method.bootstrap_file
        if target.exists():
            raise ApmError(f"{target} exists but does not define '{method.block_label}'")

        if not self.confirm(f"About to create file '{method.bootstrap_file}' and add module '{method.module_path}'"):
            warnings.append(f"{method.bootstrap_file} not created.")
            return None

        try:
            packages_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ApmError(f"Error creating directory {packages_dir}: {e}") from e

        try:
            atomic_write(target, BOILERPLATES[method])
        except OSError as e:
            raise ApmError(f"Error creating {target}: {e}") from e
        logger.info(f"Created {target}")

        self._register(lambda: self.sections.add_module(self.flake_path, method.module_path),
                       f"module '{method.module_path}'", warnings)
        return target

    def _ensure_flake_wiring(self, input_name: str, module: str, warnings: List[str]) -> None:
        self._register(lambda: self.sections.add_input(self.flake_path, input_name),
                       f"input '{input_name}'", warnings)
        self._register(lambda: self.sections.add_module(self.flake_path, module),
                       f"module '{module}'", warnings)

    def _register(self, action: Callable[[], SectionStatus], what: str, warnings: List[str]) -> None:
        try:
            status = action()
        except (NotFoundError, OSError) as e:
            logger.error(f"Error adding {what} to flake: {e}")
            warnings.append(f"Could not add {what} to flake.nix: {e}")
            return
        if status is SectionStatus.CANCELLED:
            warnings.append(f"{what[0].upper()}{what[1:]} not added to flake.nix.")

    def _insert_into(self, path: Path, method: InstallationMethod, entry: str) -> Dict[str, Any]:
        presence = app_id_match(entry) if method is InstallationMethod.SANDBOXED_APP else exact_match(entry)
        try:
            status = self.blocks.insert_entry(path, method.block_label, entry, presence)
            return {"file_path": str(path), "status": status.value, "error": None}
        except NotFoundError:
            return {"file_path": str(path), "status": "NO_BLOCK", "error": None}
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"File error: {path}: {e}")
            return {"file_path": str(path), "status": "IO_ERROR", "error": str(e)}

    def _derive_status(self, files: List[Dict[str, Any]]) -> str:
        statuses = {f["status"] for f in files}
        if "ADDED" in statuses:
            return "MODIFIED"
        if "ALREADY_PRESENT" in statuses:
            return "ALREADY_PRESENT"
        return "NO_BLOCK"

    def generate_summary(self, report: InstallReport) -> Dict[str, Any]:
        """Per-status file counts for the end-of-run table."""
        counts = {"ADDED": 0, "ALREADY_PRESENT": 0, "NO_BLOCK": 0, "IO_ERROR": 0}
        for f in report.files:
            counts[f["status"]] = counts.get(f["status"], 0) + 1
        return {
            "status": report.status,
            "package": report.package,
            "method": report.method.display_name,
            "files_scanned": len(report.files),
            "files_added": counts["ADDED"],
            "files_already_present": counts["ALREADY_PRESENT"],
            "files_without_block": counts["NO_BLOCK"],
            "file_errors": counts["IO_ERROR"],
        }

    # ------------------------------------------------------------------
    # Flake helpers
    # ------------------------------------------------------------------

    def _flake_text(self) -> str:
        try:
            return read_text(self.flake_path)
        except OSError as e:
            raise ApmError(f"Error reading flake.nix: {e}") from e

    def add_input(self, name: str, url: str = "") -> SectionStatus:
        try:
            return self.sections.add_input(self.flake_path, name, url)
        except OSError as e:
            raise ApmError(f"Error adding input '{name}': {e}") from e

    def list_inputs(self) -> List[FlakeInput]:
        return list_inputs(self._flake_text())

    def list_modules(self) -> List[str]:
        return suggest_input_modules(self.list_inputs())

    def nixpkgs_version(self) -> str:
        return read_nixpkgs_version(self._flake_text())

    def update_nixpkgs_version(self, latest: str) -> Tuple[Optional[str], bool]:
        """
        Pins nixpkgs to `latest`. Returns (previous release, written); the
        file is left alone when there is nothing to change or the user
        declines. An unstable pin is never rewritten.
        """
        text = self._flake_text()
        try:
            current = read_nixpkgs_version(text)
        except NotFoundError:
            current = None
        if current == latest:
            logger.info(f"nixpkgs already at {latest}")
            return current, False
        if current == "unstable":
            logger.info("nixpkgs is pinned to unstable; not updating")
            return current, False

        updated = replace_nixpkgs_version(text, latest)
        if updated == text:
            raise ApmError("nixpkgs.url does not name a NixOS release to update")
        if not self.confirm(f"About to update nixpkgs from {current or 'unknown'} to {latest}"):
            return current, False
        try:
            atomic_write(self.flake_path, updated)
        except OSError as e:
            raise ApmError(f"Error writing flake.nix: {e}") from e
        logger.info(f"Updated nixpkgs version to {latest}")
        return current, True
