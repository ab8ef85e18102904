import json
import subprocess
from pathlib import Path

import pytest

from apm.config.settings import (
    DEFAULT_FLAKE_LOCATION,
    load_settings,
    read_flake_location,
    write_flake_location,
)
from apm.core.errors import ApmError, CommandError
from apm.system import commands


def test_defaults_without_config_file(tmp_path):
    settings = load_settings(tmp_path / "config", tmp_path / "cache")

    assert settings.index_path == tmp_path / "cache" / "apm.db"
    assert settings.location_file == tmp_path / "config" / "flakelocation.txt"
    assert settings.flathub_timeout == 5.0
    assert settings.version_timeout == 15.0
    assert settings.log_level == "WARNING"


def test_config_yaml_overrides(tmp_path):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "config.yaml").write_text(
        "cache_dir: /var/cache/apm\n"
        "flathub_timeout: 2\n"
        "log_level: debug\n"
        "unknown_key: ignored\n"
    )
    settings = load_settings(config_dir, tmp_path / "cache")

    assert settings.cache_dir == Path("/var/cache/apm")
    assert settings.flathub_timeout == 2.0
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("content", ["flathub_timeout: [unclosed\n", "- just\n- a list\n"])
def test_malformed_config_falls_back_to_defaults(tmp_path, content):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "config.yaml").write_text(content)

    settings = load_settings(config_dir, tmp_path / "cache")

    assert settings.flathub_timeout == 5.0


def test_invalid_timeout_is_ignored(tmp_path):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "config.yaml").write_text("version_timeout: soon\n")
    assert load_settings(config_dir, tmp_path).version_timeout == 15.0


def test_location_file_created_on_first_read(tmp_path):
    settings = load_settings(tmp_path / "config", tmp_path / "cache")

    assert read_flake_location(settings) == Path(DEFAULT_FLAKE_LOCATION)
    assert settings.location_file.read_text().strip() == DEFAULT_FLAKE_LOCATION


def test_set_location_round_trip(tmp_path):
    settings = load_settings(tmp_path / "config", tmp_path / "cache")
    flake_dir = tmp_path / "nixos"
    flake_dir.mkdir()

    write_flake_location(settings, flake_dir)

    assert read_flake_location(settings) == flake_dir.resolve()


def test_set_location_rejects_missing_directory(tmp_path):
    settings = load_settings(tmp_path / "config", tmp_path / "cache")
    with pytest.raises(ApmError):
        write_flake_location(settings, tmp_path / "missing")
    assert not settings.location_file.exists()


def test_empty_location_file(tmp_path):
    settings = load_settings(tmp_path / "config", tmp_path / "cache")
    settings.location_file.parent.mkdir(parents=True)
    settings.location_file.write_text("\n")
    with pytest.raises(ApmError):
        read_flake_location(settings)


SEARCH_OUTPUT = {
    "legacyPackages.x86_64-linux.firefox": {
        "pname": "firefox", "version": "128.0", "description": "Web browser"
    },
    "legacyPackages.x86_64-linux.python3Packages.requests": {
        "version": "2.32.3", "description": "HTTP library"
    },
}


def _completed(cmd, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)


def test_parse_search_output():
    records = list(commands.parse_search_output(json.dumps(SEARCH_OUTPUT)))

    assert [r.name for r in records] == ["firefox", "requests"]
    assert records[0].version == "128.0"
    assert records[1].description == "HTTP library"


def test_nix_search_all(monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return _completed(cmd, stdout=json.dumps(SEARCH_OUTPUT))

    monkeypatch.setattr(commands.subprocess, "run", fake_run)

    assert len(commands.nix_search_all()) == 2
    assert calls == [["nix", "search", "nixpkgs", "", "--json"]]


def test_nix_search_failure(monkeypatch):
    monkeypatch.setattr(commands.subprocess, "run",
                        lambda cmd, **kwargs: _completed(cmd, 1, stderr="error: flake not found"))
    with pytest.raises(CommandError, match="flake not found"):
        commands.nix_search_all()


def test_nix_search_bad_json(monkeypatch):
    monkeypatch.setattr(commands.subprocess, "run", lambda cmd, **kwargs: _completed(cmd, stdout="{oops"))
    with pytest.raises(CommandError):
        commands.nix_search_all()


def test_missing_executable_is_127(monkeypatch):
    def missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(commands.subprocess, "run", missing)
    monkeypatch.setattr(commands.subprocess, "call", missing)

    assert commands.run_capture(["nix", "--version"])[0] == 127
    assert commands.rebuild_system(Path("/etc/nixos")) == 127


def test_rebuild_and_update_commands(monkeypatch, tmp_path):
    calls = []

    def fake_call(cmd, cwd=None):
        calls.append((cmd, cwd))
        return 0

    monkeypatch.setattr(commands.subprocess, "call", fake_call)

    assert commands.rebuild_system(tmp_path) == 0
    assert commands.update_flake(tmp_path) == 0
    assert calls == [
        (["sudo", "nixos-rebuild", "switch", "--flake", str(tmp_path)], None),
        (["sudo", "nix", "flake", "update"], tmp_path),
    ]
