#!/usr/bin/env python3
"""
APM NIX COMMANDS
----------------
Wrappers around the external tools APM drives but does not reimplement:
`nix search` (index source), `nixos-rebuild` and `nix flake update`.

Author: APM Team
Date: 2026-10-17
"""

import json
import logging
import subprocess
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from apm.core.errors import CommandError
from apm.core.models import PackageRecord

logger = logging.getLogger("apm.commands")

NIX_SEARCH = ["nix", "search", "nixpkgs", "", "--json"]


def run_capture(cmd: List[str], cwd: Optional[Path] = None) -> Tuple[int, str, str]:
    """Runs cmd to completion; returns (exit code, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        p = subprocess.run(cmd, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        return p.returncode, p.stdout, p.stderr
    except FileNotFoundError:
        return 127, "", f"Command not found: {cmd[0]}"


def run_attached(cmd: List[str], cwd: Optional[Path] = None) -> int:
    """Runs cmd with the terminal attached so sudo can prompt and output streams."""
    logger.debug(f"Running attached: {' '.join(cmd)}")
    try:
        return subprocess.call(cmd, cwd=cwd)
    except FileNotFoundError:
        logger.error(f"Command not found: {cmd[0]}")
        return 127


def parse_search_output(raw: str) -> Iterator[PackageRecord]:
    """
    `nix search --json` maps attribute paths to {pname, version, description}.
    The record name is the pname, or the last attribute segment without one.
    """
    try:
        packages = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CommandError(f"Error parsing nix search JSON: {e}") from e
    if not isinstance(packages, dict):
        raise CommandError("Unexpected nix search output")

    for attr, info in packages.items():
        info = info if isinstance(info, dict) else {}
        name = info.get("pname") or attr.rsplit(".", 1)[-1]
        yield PackageRecord(
            name=name,
            version=str(info.get("version") or ""),
            description=str(info.get("description") or ""),
        )


def nix_search_all() -> List[PackageRecord]:
    rc, out, err = run_capture(NIX_SEARCH)
    if rc != 0:
        raise CommandError(f"Error running nix search: {err.strip() or f'exit code {rc}'}")
    return list(parse_search_output(out))


def rebuild_system(flake_root: Path) -> int:
    return run_attached(["sudo", "nixos-rebuild", "switch", "--flake", str(flake_root)])


def update_flake(flake_root: Path) -> int:
    return run_attached(["sudo", "nix", "flake", "update"], cwd=flake_root)
