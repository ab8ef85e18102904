#!/usr/bin/env python3
"""
APM CHANNEL DISCOVERY
---------------------
Finds the newest stable NixOS release by walking a fixed chain of remote
sources. Each source either yields a parseable version or is logged and
skipped; the first one to answer wins.

Author: APM Team
Date: 2026-10-17
"""

import json
import logging
import re
from typing import Callable, Iterable, List, NamedTuple, Optional

import requests

from apm.core.errors import RemoteUnavailableError

logger = logging.getLogger("apm.channels")

DEFAULT_TIMEOUT = 15.0

RELEASE = re.compile(r"^\d+\.\d+$")
CHANNEL_RELEASE = re.compile(r"nixos-(\d+\.\d+)")
HOMEPAGE_RELEASE = re.compile(r"(\d{2}\.\d{2})")


def _latest(versions: Iterable[str], source: str) -> str:
    unique = sorted(set(versions), key=lambda v: tuple(int(part) for part in v.split(".")))
    if not unique:
        raise ValueError(f"no valid nixos versions found in {source}")
    return unique[-1]


def parse_github_branches(body: str) -> str:
    versions = []
    for branch in json.loads(body):
        name = branch.get("name", "")
        if name.startswith("nixos-") and "-small" not in name:
            version = name[len("nixos-"):]
            if RELEASE.match(version):
                versions.append(version)
    return _latest(versions, "branches")


def parse_github_releases(body: str) -> str:
    versions = []
    for release in json.loads(body):
        tag = release.get("tag_name", "")
        if tag.startswith("nixos-") and RELEASE.match(tag[len("nixos-"):]):
            versions.append(tag[len("nixos-"):])
    return _latest(versions, "releases")


def parse_nix_channels(body: str) -> str:
    return _latest(CHANNEL_RELEASE.findall(body), "Nix channels")


def parse_nix_homepage(body: str) -> str:
    versions = []
    for line in body.splitlines():
        if "nixos" not in line and "NixOS" not in line and "release" not in line:
            continue
        for match in HOMEPAGE_RELEASE.findall(line):
            major, minor = (int(part) for part in match.split("."))
            if 20 <= major <= 30 and 0 <= minor <= 12:
                versions.append(match)
    return _latest(versions, "Nix homepage")


class VersionSource(NamedTuple):
    name: str
    url: str
    parse: Callable[[str], str]


SOURCES: List[VersionSource] = [
    VersionSource("GitHub Branches", "https://api.github.com/repos/NixOS/nixpkgs/branches?per_page=100",
                  parse_github_branches),
    VersionSource("GitHub Releases", "https://api.github.com/repos/NixOS/nixpkgs/releases?per_page=100",
                  parse_github_releases),
    VersionSource("Nix Channels", "https://channels.nixos.org/", parse_nix_channels),
    VersionSource("Nix Homepage", "https://nixos.org/", parse_nix_homepage),
]


class ChannelDiscovery:
    def __init__(self, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None,
                 sources: Optional[List[VersionSource]] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sources = sources if sources is not None else SOURCES

    def fetch(self, url: str) -> str:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.text
        except requests.exceptions.RequestException as e:
            raise RemoteUnavailableError(f"failed to fetch {url}: {e}") from e

    def latest_version(self) -> str:
        for source in self.sources:
            logger.info(f"Trying to get version from {source.name}: {source.url}")
            try:
                version = source.parse(self.fetch(source.url))
            except (RemoteUnavailableError, ValueError, AttributeError, TypeError) as e:
                logger.warning(f"Failed to parse version from {source.name}: {e}")
                continue
            logger.info(f"Successfully got version {version} from {source.name}")
            return version
        raise RemoteUnavailableError("failed to get version from all sources")
