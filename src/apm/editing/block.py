#!/usr/bin/env python3
"""
APM BLOCK EDITOR - The Splicer
------------------------------
Finds a named list block (`home.packages = [ ... ];`) inside a .nix file
by line and bracket scanning, reads its entries and splices new entries
in front of the closing bracket. Everything outside the block's line
range survives byte-for-byte.

The scan is line based: the first line carrying the label outside a
comment starts the block. The '[' must follow the label on that line, or
open the first later line with code on it. The first ']' after that
closes the block. Comments ('#' to end of line) are ignored while looking
for labels and delimiters and stripped from entries. Lines keep their own
terminators, so mixed LF/CRLF files round-trip unchanged.

Author: APM Team
Date: 2026-10-17
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Tuple

from apm.core.errors import BlockNotFoundError
from apm.core.models import InsertStatus
from apm.editing.textfile import PathLike, atomic_write, detect_newline, read_text

logger = logging.getLogger("apm.editing")

PresenceTest = Callable[[str], bool]

QUOTED_VALUE = re.compile(r'"([^"]*)"')
LINE_BREAK = re.compile(r"(?<=\n)")


@dataclass(frozen=True)
class Block:
    """Line/column coordinates of one bracket-delimited list block."""
    label_line: int
    open_line: int
    open_col: int           # column of '['
    close_line: int
    close_col: int          # column of ']'

    @property
    def single_line(self) -> bool:
        return self.open_line == self.close_line


def exact_match(entry: str) -> PresenceTest:
    """Presence test for nixpkgs entries: trimmed text equality."""
    def test(candidate: str) -> bool:
        return candidate.strip() == entry
    return test


def app_id_match(entry: str) -> PresenceTest:
    """
    Presence test for Flatpak entries. Matches the whole literal as a
    substring, or any line naming `appId` together with the entry's app id.
    Loose: `org.foo.Bar` also matches `org.foo.BarExtra`.
    """
    found = QUOTED_VALUE.search(entry)
    app_id = found.group(1) if found else entry

    def test(candidate: str) -> bool:
        return entry in candidate or ("appId" in candidate and app_id in candidate)
    return test


def _code_end(line: str) -> int:
    """Column where the trailing comment begins, or len(line)."""
    idx = line.find("#")
    return idx if idx != -1 else len(line)


def _indent_of(line: str) -> str:
    return line[:len(line) - len(line.lstrip(" \t"))]


def _ending(line: str) -> str:
    return line[len(line.rstrip("\r\n")):]


def split_lines(text: str) -> List[str]:
    """Lines with their own terminators, so "".join() restores the text exactly."""
    return [line for line in LINE_BREAK.split(text) if line]


def label_in_code(line: str, label: str) -> bool:
    """True when `label` occurs in the code part of `line`, not in its comment."""
    return label in line[:_code_end(line)]


class BlockEditor:
    """
    Reads and edits one list block per call. Stateless; every call is a
    complete read (and at most one write) of a single file.
    """

    def locate(self, lines: List[str], label: str) -> Block:
        label_line = next((i for i, line in enumerate(lines) if label_in_code(line, label)), -1)
        if label_line == -1:
            raise BlockNotFoundError(f"Block '{label}' not found")

        open_line = open_col = -1
        line = lines[label_line]
        start = line.index(label) + len(label)
        col = line.find("[", start, _code_end(line))
        if col != -1:
            open_line, open_col = label_line, col
        else:
            # '[' may open a later line, ahead of any other code
            for i in range(label_line + 1, len(lines)):
                code = lines[i][:_code_end(lines[i])]
                if not code.strip():
                    continue
                if code.lstrip().startswith("["):
                    open_line, open_col = i, code.index("[")
                break
        if open_line == -1:
            raise BlockNotFoundError(f"Opening bracket for '{label}' not found")

        for i in range(open_line, len(lines)):
            line = lines[i]
            start = open_col + 1 if i == open_line else 0
            col = line.find("]", start, _code_end(line))
            if col != -1:
                return Block(label_line, open_line, open_col, i, col)
        raise BlockNotFoundError(f"Closing bracket for '{label}' not found")

    def entries(self, lines: List[str], block: Block) -> List[Tuple[int, str]]:
        """(line index, entry text) for every non-empty fragment inside the block."""
        found = []
        for i in range(block.open_line, block.close_line + 1):
            line = lines[i]
            start = block.open_col + 1 if i == block.open_line else 0
            end = block.close_col if i == block.close_line else len(line)
            fragment = line[start:end]
            fragment = fragment[:_code_end(fragment)].strip()
            if fragment:
                found.append((i, fragment))
        return found

    def read_entries(self, path: PathLike, label: str) -> List[str]:
        lines = split_lines(read_text(path))
        block = self.locate(lines, label)
        return [text for _, text in self.entries(lines, block)]

    def insert_entry(self, path: PathLike, label: str, entry: str,
                     presence_test: PresenceTest) -> InsertStatus:
        """
        Adds `entry` as the last element of the block unless `presence_test`
        accepts one of the existing entries. Raises BlockNotFoundError when
        the file does not define the block.
        """
        text = read_text(path)
        lines = split_lines(text)
        block = self.locate(lines, label)
        existing = self.entries(lines, block)

        if any(presence_test(fragment) for _, fragment in existing):
            logger.debug(f"{entry} already present in {path}")
            return InsertStatus.ALREADY_PRESENT

        # New lines take the terminator of the block's own lines
        newline = (_ending(lines[block.close_line]) or _ending(lines[block.open_line])
                   or detect_newline(text))
        new_lines = self._splice(lines, block, entry, existing, newline)
        atomic_write(path, "".join(new_lines))
        logger.info(f"Added {entry} to {path}")
        return InsertStatus.ADDED

    def _splice(self, lines: List[str], block: Block, entry: str,
                existing: List[Tuple[int, str]], newline: str) -> List[str]:
        close = lines[block.close_line]
        outer_indent = _indent_of(lines[block.label_line])

        if block.single_line:
            # `label = [ a ];` -> open line / entries / closing line
            head = close[:block.open_col + 1].rstrip()
            inner = close[block.open_col + 1:block.close_col].strip()
            inner_indent = outer_indent + "  "
            spliced = [head + newline]
            if inner:
                spliced.append(inner_indent + inner + newline)
            spliced.append(inner_indent + entry + newline)
            spliced.append(outer_indent + close[block.close_col:])
            return lines[:block.close_line] + spliced + lines[block.close_line + 1:]

        before_close = close[:block.close_col]
        between = [i for i, _ in existing if block.open_line < i < block.close_line]
        if between:
            entry_indent = _indent_of(lines[between[-1]])
        elif before_close.strip():
            entry_indent = _indent_of(close)
        else:
            entry_indent = _indent_of(close) + "  "

        if before_close.strip():
            # Content shares the line with ']': keep it, then the new entry, then ']'
            spliced = [before_close.rstrip() + newline, entry_indent + entry + newline,
                       outer_indent + close[block.close_col:]]
            return lines[:block.close_line] + spliced + lines[block.close_line + 1:]

        return lines[:block.close_line] + [entry_indent + entry + newline] + lines[block.close_line:]
