#!/usr/bin/env python3
"""
APM ERRORS
----------
Exception taxonomy for the engine. Not-found conditions are soft and
per-file; everything else surfaces to the CLI.

Author: APM Team
Date: 2026-10-17
"""


class ApmError(Exception):
    """Base class. Raised directly for fatal process errors."""


class NotFoundError(ApmError):
    """A label or one of its delimiters is missing from a file."""


class BlockNotFoundError(NotFoundError):
    pass


class SectionNotFoundError(NotFoundError):
    pass


class IndexMissingError(ApmError):
    """The local package store has not been generated yet."""

    def __init__(self, message: str = "No local database found! Generate it with 'apm makecache'"):
        super().__init__(message)


class RemoteUnavailableError(ApmError):
    """Network failure, timeout, non-2xx or undecodable remote response."""


class CommandError(ApmError):
    """An external command exited non-zero or produced unusable output."""
