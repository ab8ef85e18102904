import pytest

from apm.core.engine import InstallEngine, build_entry, entry_matches
from apm.core.errors import ApmError
from apm.core.models import InstallationMethod, SectionStatus

from conftest import FLAKE, Answers, FakeFlathub, FakeIndex

HOME = InstallationMethod.PER_USER_PROFILE
SYSTEM = InstallationMethod.SYSTEM_WIDE
FLATPAK = InstallationMethod.SANDBOXED_APP

EMPTY_HOME = "{ config, pkgs, ... }:\n{\n  home.packages = [ ];\n}\n"


def _engine(root, answers=None, names=("firefox", "firefox-esr", "neovim", "htop"), index=None, flathub=None):
    return InstallEngine(
        root,
        index or FakeIndex(names),
        flathub or FakeFlathub(apps={"org.mozilla.firefox"}, aliases={"firefox": "org.mozilla.firefox"}),
        answers or Answers(),
    )


@pytest.mark.parametrize("name, method, unstable, expected", [
    ("firefox", HOME, False, "pkgs.firefox"),
    ("pkgs.firefox", SYSTEM, False, "pkgs.firefox"),
    ("unstable.firefox", HOME, False, "unstable.firefox"),
    ("neovim", HOME, True, "unstable.neovim"),
    ("unstable.neovim", SYSTEM, True, "unstable.neovim"),
    ("org.mozilla.firefox", FLATPAK, False, '{ appId = "org.mozilla.firefox"; origin = "flathub"; }'),
])
def test_build_entry(name, method, unstable, expected):
    assert build_entry(name, method, unstable) == expected


def test_entry_equivalence():
    assert entry_matches("pkgs.firefox", "firefox", HOME)
    assert entry_matches("unstable.firefox", "firefox", SYSTEM)
    assert not entry_matches("pkgs.firefox-esr", "firefox", HOME)
    assert entry_matches('{ appId = "org.mozilla.firefox"; origin = "flathub"; }', "org.mozilla.firefox", FLATPAK)


def test_fresh_profile_install(flake_root):
    """
    SCENARIO: empty home.packages block, package in the index.
    One confirmation, one edited file.
    """
    home = flake_root / "home.nix"
    home.write_text(EMPTY_HOME)
    answers = Answers()

    report = _engine(flake_root, answers).install("firefox", HOME)

    assert report.status == "MODIFIED"
    assert report.entry == "pkgs.firefox"
    assert home.read_text() == "{ config, pkgs, ... }:\n{\n  home.packages = [\n    pkgs.firefox\n  ];\n}\n"
    assert answers.prompts == ["About to install 'firefox' (HomeManager)"]
    statuses = {f["file_path"]: f["status"] for f in report.files}
    assert statuses[str(home)] == "ADDED"
    assert statuses[str(flake_root / "flake.nix")] == "NO_BLOCK"


def test_already_installed_writes_nothing(flake_root):
    home = flake_root / "home.nix"
    home.write_text("{\n  home.packages = [\n    pkgs.firefox\n  ];\n}\n")
    snapshot = {p: p.read_text() for p in flake_root.rglob("*.nix")}
    answers = Answers()

    report = _engine(flake_root, answers).install("firefox", HOME)

    assert report.status == "ALREADY_INSTALLED"
    assert answers.prompts == []
    assert {p: p.read_text() for p in flake_root.rglob("*.nix")} == snapshot


def test_unstable_entry_counts_as_installed(flake_root):
    (flake_root / "home.nix").write_text("{\n  home.packages = [ unstable.neovim ];\n}\n")
    assert _engine(flake_root).install("neovim", HOME).status == "ALREADY_INSTALLED"


def test_missing_block_bootstraps_file(flake_root):
    """
    SCENARIO: no file defines environment.systemPackages. The engine
    creates packages/environment-packages.nix, registers it in flake.nix
    and inserts into the new file.
    """
    answers = Answers()

    report = _engine(flake_root, answers).install("htop", SYSTEM)

    created = flake_root / "packages" / "environment-packages.nix"
    assert report.status == "MODIFIED"
    assert report.bootstrapped == str(created)
    assert "    pkgs.htop\n  ];" in created.read_text()
    assert "        ./packages/environment-packages.nix\n      ];" in (flake_root / "flake.nix").read_text()
    assert answers.prompts == [
        "About to install 'htop' (NixEnv)",
        "About to create file 'environment-packages.nix' and add module './packages/environment-packages.nix'",
        "About to add module './packages/environment-packages.nix' to flake",
    ]


def test_home_manager_bootstrap_wires_flake(flake_root):
    report = _engine(flake_root).install("firefox", HOME)

    flake = (flake_root / "flake.nix").read_text()
    assert report.status == "MODIFIED"
    assert 'home-manager.url = "github:nix-community/home-manager/release-24.11";' in flake
    assert "inputs.home-manager.nixosModules.home-manager" in flake
    assert "./packages/home-packages.nix" in flake
    assert "pkgs.firefox" in (flake_root / "packages" / "home-packages.nix").read_text()


def test_declined_bootstrap_leaves_no_block(flake_root):
    answers = Answers(decline_containing="About to create file")

    report = _engine(flake_root, answers).install("htop", SYSTEM)

    assert report.status == "NO_BLOCK"
    assert not (flake_root / "packages" / "environment-packages.nix").exists()
    assert (flake_root / "flake.nix").read_text() == FLAKE


def test_bootstrap_requires_flake_nix(tmp_path):
    root = tmp_path / "nixos"
    root.mkdir()
    (root / "configuration.nix").write_text("{ }\n")

    with pytest.raises(ApmError, match="flake.nix"):
        _engine(root).install("htop", SYSTEM)


def test_unstable_prompts_for_input(flake_root):
    """
    SCENARIO: --unstable without an `unstable` input asks to add it and
    the entry uses the unstable prefix.
    """
    home = flake_root / "home.nix"
    home.write_text(EMPTY_HOME)
    answers = Answers()

    report = _engine(flake_root, answers).install("neovim", HOME, unstable=True)

    assert report.status == "MODIFIED"
    assert report.entry == "unstable.neovim"
    assert answers.prompts[0].startswith("About to add input 'unstable'")
    assert 'unstable.url = "github:NixOS/nixpkgs/nixos-unstable";' in (flake_root / "flake.nix").read_text()
    assert "unstable.neovim" in home.read_text()


def test_declined_unstable_input_is_a_warning(flake_root):
    home = flake_root / "home.nix"
    home.write_text(EMPTY_HOME)
    answers = Answers(decline_containing="About to add input")

    report = _engine(flake_root, answers).install("neovim", HOME, unstable=True)

    assert report.status == "MODIFIED"
    assert report.warnings == ["Unstable input not added. Package installation may fail."]
    assert "unstable.url" not in (flake_root / "flake.nix").read_text()


def test_cancelled_install_writes_nothing(flake_root):
    home = flake_root / "home.nix"
    home.write_text(EMPTY_HOME)

    report = _engine(flake_root, Answers(default=False)).install("firefox", HOME)

    assert report.status == "CANCELLED"
    assert home.read_text() == EMPTY_HOME
    assert report.files == []


def test_unknown_package_gets_suggestions(flake_root):
    report = _engine(flake_root).install("firef", HOME)

    assert report.status == "NOT_FOUND"
    assert [s.name for s in report.suggestions] == ["firefox", "firefox-esr"]


def test_exact_suppresses_suggestions(flake_root):
    report = _engine(flake_root).install("firef", HOME, exact=True)
    assert report.status == "NOT_FOUND"
    assert report.suggestions == []


def test_missing_index(flake_root):
    report = _engine(flake_root, index=FakeIndex(missing=True)).install("firefox", HOME)
    assert report.status == "INDEX_MISSING"
    assert "apm makecache" in report.warnings[0]


def test_flatpak_install_resolves_bare_term(flake_root):
    flatpaks = flake_root / "flatpak.nix"
    flatpaks.write_text("{\n  services.flatpak.packages = [\n  ];\n}\n")

    report = _engine(flake_root).install("firefox", FLATPAK)

    assert report.status == "MODIFIED"
    assert report.package == "org.mozilla.firefox"
    assert '    { appId = "org.mozilla.firefox"; origin = "flathub"; }\n  ];' in flatpaks.read_text()
    assert _engine(flake_root).install("firefox", FLATPAK).status == "ALREADY_INSTALLED"


def test_flatpak_unknown_app(flake_root):
    assert _engine(flake_root).install("org.example.Nope", FLATPAK).status == "NOT_FOUND"


def test_every_file_with_the_block_is_edited(flake_root):
    (flake_root / "home.nix").write_text(EMPTY_HOME)
    (flake_root / "work.nix").write_text("{\n  home.packages = [\n    pkgs.git\n  ];\n}\n")

    report = _engine(flake_root).install("firefox", HOME)
    summary = _engine(flake_root).generate_summary(report)

    assert summary["files_added"] == 2
    assert summary["files_scanned"] == 4


def test_list_installed_and_has_block(flake_root):
    (flake_root / "home.nix").write_text("{\n  home.packages = [\n    pkgs.git\n    pkgs.htop\n  ];\n}\n")
    engine = _engine(flake_root)

    assert engine.list_installed(HOME) == ["pkgs.git", "pkgs.htop"]
    assert engine.has_block(HOME)
    assert not engine.has_block(SYSTEM)


def test_flake_helpers(flake_root):
    engine = _engine(flake_root)

    assert engine.nixpkgs_version() == "24.11"
    assert engine.add_input("flatpaks") is SectionStatus.ADDED
    assert "flatpaks.nixosModules.nix-flatpak" in engine.list_modules()

    previous, written = engine.update_nixpkgs_version("25.05")
    assert (previous, written) == ("24.11", True)
    assert engine.nixpkgs_version() == "25.05"
    assert engine.update_nixpkgs_version("25.05") == ("25.05", False)


def test_missing_flake_root(tmp_path):
    with pytest.raises(ApmError, match="set-location"):
        _engine(tmp_path / "nowhere").list_installed(HOME)


def test_commented_label_does_not_count_as_block(flake_root):
    """
    SCENARIO: configuration.nix only mentions home.packages in a comment.
    Nothing is listed, the imports list is left alone and the install
    bootstraps a real home.packages file instead.
    """
    configuration = flake_root / "configuration.nix"
    configuration.write_text(
        "{ ... }:\n{\n  # home.packages live in home.nix\n  imports = [\n    ./hardware.nix\n  ];\n}\n"
    )
    before = configuration.read_text()
    engine = _engine(flake_root)

    assert engine.list_installed(HOME) == []
    assert not engine.has_block(HOME)

    report = engine.install("firefox", HOME)

    assert report.status == "MODIFIED"
    assert report.bootstrapped == str(flake_root / "packages" / "home-packages.nix")
    assert configuration.read_text() == before


def test_unstable_pin_is_not_updated(flake_root):
    flake = flake_root / "flake.nix"
    flake.write_text(FLAKE.replace("nixos-24.11", "nixos-unstable"))
    answers = Answers()

    assert _engine(flake_root, answers).update_nixpkgs_version("25.05") == ("unstable", False)
    assert answers.prompts == []
    assert "nixos-unstable" in flake.read_text()
