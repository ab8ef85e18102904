#!/usr/bin/env python3
"""
APM CORE MODELS
---------------
Defines the fundamental data structures shared across the APM engine:
package records, installation methods and the per-run install report.

Author: APM Team
Date: 2026-10-17
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class PackageRecord:
    """
    One known package, as stored in the local index or returned by Flathub.
    """
    name: str               # Attribute name (nixpkgs pname) or Flatpak app id
    version: str = ""
    description: str = ""


class InstallationMethod(Enum):
    """
    The three supported installation targets. Each value carries the block
    label it edits, a display name, its CLI flag and its bootstrap file.
    """
    SYSTEM_WIDE = ("environment.systemPackages", "NixEnv", "nix-env", "environment-packages.nix")
    SANDBOXED_APP = ("services.flatpak.packages", "Flatpak", "flatpak", "flatpak-packages.nix")
    PER_USER_PROFILE = ("home.packages", "HomeManager", "home-manager", "home-packages.nix")

    def __init__(self, block_label: str, display_name: str, flag: str, bootstrap_file: str):
        self.block_label = block_label
        self.display_name = display_name
        self.flag = flag
        self.bootstrap_file = bootstrap_file

    @property
    def module_path(self) -> str:
        """Path under which the bootstrapped file is registered in flake.nix."""
        return f"./packages/{self.bootstrap_file}"

    @property
    def uses_nixpkgs(self) -> bool:
        return self is not InstallationMethod.SANDBOXED_APP


def determine_method(flatpak: bool = False, nix_env: bool = False,
                     home_manager: bool = False) -> InstallationMethod:
    """
    Resolves the selector flags to a single method.
    More than one flag is a user error; none defaults to HomeManager.
    """
    if sum(1 for flag in (flatpak, nix_env, home_manager) if flag) > 1:
        raise ValueError("multiple methods specified")
    if flatpak:
        return InstallationMethod.SANDBOXED_APP
    if nix_env:
        return InstallationMethod.SYSTEM_WIDE
    return InstallationMethod.PER_USER_PROFILE


class InsertStatus(Enum):
    ADDED = "ADDED"
    ALREADY_PRESENT = "ALREADY_PRESENT"


class SectionStatus(Enum):
    ADDED = "ADDED"
    ALREADY_PRESENT = "ALREADY_PRESENT"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class FlakeInput:
    """A single `name.url = "..."` or `name.follows = "..."` declaration."""
    name: str
    kind: str               # url | follows
    target: str


@dataclass
class RebuildResult:
    """Outcome of a cache rebuild: rows written plus per-record failures."""
    count: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class InstallReport:
    """
    The record of one `add` run. `status` is the terminal state reached by
    the orchestrator; `files` holds one dict per .nix file visited during
    insertion (file_path, status, error).
    """
    package: str
    method: InstallationMethod
    status: str = "PENDING"
    entry: Optional[str] = None
    files: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[PackageRecord] = field(default_factory=list)
    bootstrapped: Optional[str] = None
