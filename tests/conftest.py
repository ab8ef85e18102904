import pytest
from pathlib import Path

from apm.core.errors import IndexMissingError
from apm.core.models import PackageRecord
from apm.index.ranking import rank_by_relevance

FLAKE = """{
  description = "test system";

  inputs = {
    nixpkgs.url = "github:NixOS/nixpkgs/nixos-24.11";
  };

  outputs = { self, nixpkgs, ... }@inputs: {
    nixosConfigurations.host = nixpkgs.lib.nixosSystem {
      system = "x86_64-linux";
      modules = [
        ./configuration.nix
      ];
    };
  };
}
"""

CONFIGURATION = """{ config, pkgs, ... }:
{
  networking.hostName = "host";
}
"""


class FakeIndex:
    """In-memory stand-in for PackageIndex."""

    def __init__(self, names=(), missing=False):
        self.names = sorted(names)
        self.missing = missing

    def exists(self, name):
        if self.missing:
            raise IndexMissingError()
        return name in self.names

    def search(self, query, limit=10):
        if self.missing:
            raise IndexMissingError()
        return rank_by_relevance([PackageRecord(n) for n in self.names], query, lambda r: r.name, limit)


class FakeFlathub:
    """Resolves bare terms through a fixed alias table."""

    def __init__(self, apps=(), aliases=None):
        self.apps = set(apps)
        self.aliases = aliases or {}

    def resolve(self, name, exact=False):
        app_id = name if exact or "." in name else self.aliases.get(name)
        return app_id if app_id in self.apps else None


class Answers:
    """Confirmation callback that records every prompt."""

    def __init__(self, default=True, decline_containing=None):
        self.default = default
        self.decline_containing = decline_containing
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        if self.decline_containing and self.decline_containing in prompt:
            return False
        return self.default


@pytest.fixture
def flake_root(tmp_path: Path) -> Path:
    """A minimal flake tree: flake.nix plus configuration.nix."""
    root = tmp_path / "nixos"
    root.mkdir()
    (root / "flake.nix").write_text(FLAKE)
    (root / "configuration.nix").write_text(CONFIGURATION)
    return root
