#!/usr/bin/env python3
"""
APM TEXT FILE I/O
-----------------
Whole-file reads and atomic whole-file rewrites for configuration files.
Edits never stream into the target: the new content is written to a
sibling temp file and swapped in with os.replace.

Author: APM Team
Date: 2026-10-17
"""

import os
from pathlib import Path
from typing import List, Union

PathLike = Union[str, Path]

NIX_SUFFIX = ".nix"


def read_text(path: PathLike) -> str:
    # newline="" keeps CRLF files intact through a read/modify/write cycle
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def detect_newline(text: str) -> str:
    return "\r\n" if "\r\n" in text else "\n"


def atomic_write(target_path: PathLike, content: str) -> None:
    target_path = Path(target_path)
    if not os.access(target_path.parent, os.W_OK):
        raise PermissionError(f"No write access to {target_path.parent}")
    temp_file = target_path.with_name(target_path.name + ".apm.tmp")
    try:
        with open(temp_file, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        if target_path.exists():
            os.chmod(temp_file, target_path.stat().st_mode & 0o7777)
        os.replace(temp_file, target_path)
    except OSError as e:
        if temp_file.exists():
            temp_file.unlink()
        raise OSError(f"Atomic write failed for {target_path}: {e}") from e


def list_nix_files(root: PathLike) -> List[Path]:
    """
    All regular .nix files below root, sorted. Symlinks are skipped so a
    link back into the tree cannot loop the walk.
    """
    root = Path(root)
    if root.is_file():
        return [root] if root.suffix == NIX_SUFFIX else []
    files = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in filenames:
            candidate = Path(dirpath) / name
            if name.endswith(NIX_SUFFIX) and not candidate.is_symlink() and candidate.is_file():
                files.append(candidate)
    return sorted(files)
