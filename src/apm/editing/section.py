#!/usr/bin/env python3
"""
APM SECTION EDITOR - The Flake Surgeon
--------------------------------------
Edits the top-level sections of flake.nix: the `inputs = { ... }` map
and the `modules = [ ... ]` list. Section boundaries are found by
counting braces (or brackets) from the label until the depth returns to
zero; new declarations are spliced in front of the closing delimiter.

No write ever happens without an affirmative answer from the `confirm`
callback handed in by the caller.

Author: APM Team
Date: 2026-10-17
"""

import logging
import re
from typing import Callable, Iterable, List, Sequence, Tuple

from apm.core.errors import ApmError, SectionNotFoundError
from apm.core.models import FlakeInput, SectionStatus
from apm.editing.textfile import PathLike, atomic_write, detect_newline, read_text

logger = logging.getLogger("apm.editing")

Confirm = Callable[[str], bool]

INPUTS_LABEL = "inputs = {"
MODULES_LABEL = "modules = ["

UNSTABLE_INPUT = "unstable"
UNSTABLE_URL = "github:NixOS/nixpkgs/nixos-unstable"
HOME_MANAGER_INPUT = "home-manager"
HOME_MANAGER_FALLBACK_RELEASE = "24.11"
FLATPAK_INPUT = "flatpaks"
FLATPAK_URL = "github:gmodena/nix-flatpak/?ref=latest"

DELIMITERS = {"{": "}", "[": "]"}

NIXOS_RELEASE = re.compile(r"nixos-[0-9]+\.[0-9]+")
BARE_NIXPKGS_URL = re.compile(r'(nixpkgs\.url\s*=\s*"[^"]*(?:github:|github\.com/)NixOS/nixpkgs)(/?")')
NESTED_INPUT_OPEN = re.compile(r"^([\w.-]+)\s*=\s*\{\s*$")


def _is_comment_start(text: str, i: int) -> bool:
    return text[i] == "#" and (i == 0 or text[i - 1].isspace())


def find_section(text: str, label: str) -> Tuple[int, int]:
    """
    Returns (label offset, closing delimiter offset). The delimiter kind is
    taken from the last character of the label. Comments are skipped while
    counting.
    """
    start = text.find(label)
    if start == -1:
        raise SectionNotFoundError(f"'{label}' not found")

    opener = label.rstrip()[-1]
    closer = DELIMITERS.get(opener)
    if closer is None:
        raise ValueError(f"Section label must end with '{{' or '[': {label!r}")

    depth = 0
    i = start + label.rstrip().rfind(opener)
    while i < len(text):
        ch = text[i]
        if _is_comment_start(text, i):
            eol = text.find("\n", i)
            if eol == -1:
                break
            i = eol
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return start, i
        i += 1
    raise SectionNotFoundError(f"Could not find closing '{closer}' for '{label}'")


def _insert_before_close(text: str, close_idx: int, new_lines: Sequence[str]) -> str:
    """Splices `new_lines` in front of the delimiter at close_idx, one per line."""
    newline = detect_newline(text)
    line_start = text.rfind("\n", 0, close_idx) + 1
    line = text[line_start:close_idx]
    base = line[:len(line) - len(line.lstrip())]
    indent = base + "  "
    rendered = "".join(indent + new_line + newline for new_line in new_lines)

    if not line.strip():
        return text[:line_start] + rendered + text[line_start:]
    # delimiter shares its line with content: break the line before it
    return text[:close_idx].rstrip(" ") + newline + rendered + base + text[close_idx:]


def list_inputs(text: str) -> List[FlakeInput]:
    """
    Declarations inside `inputs = { ... }`. Both the dotted form
    (`x.url = "...";`) and the nested form (`x = { url = "..."; };`) count.
    """
    start, close = find_section(text, INPUTS_LABEL)
    body = text[start + len(INPUTS_LABEL):close]
    found: List[FlakeInput] = []
    nesting: List[str] = []

    for raw in body.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        opened = NESTED_INPUT_OPEN.match(line)
        if opened:
            nesting.append(opened.group(1))
            continue
        if nesting and line.startswith("}"):
            nesting.pop()
            continue

        owner = ".".join(nesting)
        if owner and line.startswith("url ="):
            found.append(FlakeInput(owner, "url", _strip_value(line.split("=", 1)[1])))
            continue
        for kind, marker in (("url", ".url ="), ("follows", ".follows =")):
            if marker in line:
                name, _, value = line.partition(marker)
                name = f"{owner}.{name.strip()}" if owner else name.strip()
                found.append(FlakeInput(name, kind, _strip_value(value)))
                break
    return found


def _strip_value(value: str) -> str:
    return value.strip().rstrip(";").strip().strip('"')


def input_declared(text: str, name: str) -> bool:
    if any(f"{name}.url" in line for line in text.splitlines()):
        return True
    try:
        return any(i.name == name and i.kind == "url" for i in list_inputs(text))
    except SectionNotFoundError:
        return False


def suggest_input_modules(inputs: Iterable[FlakeInput]) -> List[str]:
    """Likely module attributes exposed by each URL input."""
    suggestions = []
    for flake_input in inputs:
        if flake_input.kind != "url":
            continue
        name, url = flake_input.name, flake_input.target
        if "home-manager" in url:
            suggestions += [f"{name}.nixosModules.home-manager", f"{name}.homeManagerModules.default"]
        elif "flatpak" in url:
            suggestions += [f"{name}.nixosModules.nix-flatpak", f"{name}.homeManagerModules.nix-flatpak"]
        else:
            suggestions += [f"{name}.nixosModules.default", f"{name}.homeManagerModules.default"]
    return suggestions


def _nixpkgs_url_lines(lines: List[str]) -> Iterable[int]:
    for i, line in enumerate(lines):
        stripped = line.strip()
        if "nixpkgs.url =" in stripped and not stripped.startswith("#"):
            yield i


def read_nixpkgs_version(text: str) -> str:
    """The release pinned by `nixpkgs.url`, e.g. '24.11' or 'unstable'."""
    lines = text.splitlines()
    for i in _nixpkgs_url_lines(lines):
        parts = lines[i].strip().split("nixos-")
        if len(parts) == 2:
            return parts[1].split('"')[0]
    raise SectionNotFoundError("nixpkgs version not found in flake")


def replace_nixpkgs_version(text: str, version: str) -> str:
    """Rewrites the release of the first `nixpkgs.url` line; other lines are untouched."""
    newline = detect_newline(text)
    lines = text.split(newline)
    for i in _nixpkgs_url_lines(lines):
        if "nixos-" in lines[i]:
            lines[i] = NIXOS_RELEASE.sub(f"nixos-{version}", lines[i])
        else:
            lines[i] = BARE_NIXPKGS_URL.sub(rf'\g<1>/nixos-{version}"', lines[i])
        return newline.join(lines)
    raise SectionNotFoundError("nixpkgs.url not found in flake.nix")


def resolve_input(name: str, url: str, flake_text: str) -> Tuple[str, List[str]]:
    """
    Final URL and extra declarations for an input. home-manager tracks the
    pinned nixpkgs release and follows its nixpkgs; flatpaks has a fixed URL.
    """
    if name == HOME_MANAGER_INPUT:
        follows = [f'{name}.inputs.nixpkgs.follows = "nixpkgs";']
        try:
            release = read_nixpkgs_version(flake_text)
        except SectionNotFoundError:
            logger.warning("Could not determine nixpkgs version, using default home-manager version")
            release = HOME_MANAGER_FALLBACK_RELEASE
        if release == "unstable":
            return "github:nix-community/home-manager", follows
        return f"github:nix-community/home-manager/release-{release}", follows
    if name in (FLATPAK_INPUT, "flatpak"):
        return FLATPAK_URL, []
    if not url:
        raise ApmError(f"A URL is required for input '{name}'")
    return url, []


class SectionEditor:
    """Confirmation-gated writers for the inputs map and the modules list."""

    def __init__(self, confirm: Confirm):
        self.confirm = confirm

    def insert_map_entry(self, path: PathLike, label: str, key: str, value: str,
                         extra_lines: Sequence[str] = ()) -> SectionStatus:
        text = read_text(path)
        if input_declared(text, key):
            logger.info(f"Input '{key}' already exists in {path}")
            return SectionStatus.ALREADY_PRESENT

        _, close = find_section(text, label)

        prompt = f"About to add input '{key}' with URL '{value}'"
        for line in extra_lines:
            prompt += f"\nWill also add: {line}"
        if not self.confirm(prompt):
            return SectionStatus.CANCELLED

        declaration = [f'{key}.url = "{value}";', *extra_lines]
        atomic_write(path, _insert_before_close(text, close, declaration))
        logger.info(f"Added input '{key}' with URL '{value}' to {path}")
        return SectionStatus.ADDED

    def insert_list_entry(self, path: PathLike, label: str, value: str) -> SectionStatus:
        text = read_text(path)
        # a module path is never wanted twice, wherever it already appears
        if value in text:
            logger.info(f"Module '{value}' already exists in {path}")
            return SectionStatus.ALREADY_PRESENT

        _, close = find_section(text, label)

        if not self.confirm(f"About to add module '{value}' to flake"):
            return SectionStatus.CANCELLED

        atomic_write(path, _insert_before_close(text, close, [value]))
        logger.info(f"Added module '{value}' to {path}")
        return SectionStatus.ADDED

    def add_input(self, flake_path: PathLike, name: str, url: str = "") -> SectionStatus:
        """Declares an input, applying the home-manager / flatpaks special cases."""
        final_url, extra = resolve_input(name, url, read_text(flake_path))
        return self.insert_map_entry(flake_path, INPUTS_LABEL, name, final_url, extra)

    def add_module(self, flake_path: PathLike, module_path: str) -> SectionStatus:
        return self.insert_list_entry(flake_path, MODULES_LABEL, module_path)
