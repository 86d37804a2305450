"""Tests for the CLI.

Every test points the database and artifact store at tmp_path and clears
the AI and runner credentials, so nothing leaves the machine.
"""

import json

import pytest
from typer.testing import CliRunner

from isoforge import __version__
from isoforge.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Run every command against a private data directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ISOFORGE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("ISOFORGE_STORAGE_DIR", str(tmp_path / "store"))
    monkeypatch.setenv("ISOFORGE_DB_URL", f"sqlite:///{tmp_path / 'jobs.db'}")
    monkeypatch.setenv("ISOFORGE_LOG_LEVEL", "WARNING")
    for name in ("ANTHROPIC_API_KEY", "GITHUB_TOKEN", "GITHUB_REPO", "CATALOG_PATH"):
        monkeypatch.delenv(f"ISOFORGE_{name}", raising=False)
    return tmp_path


def run_server_build() -> dict:
    result = runner.invoke(
        app,
        [
            "build",
            "run",
            "--distro",
            "debian",
            "--mode",
            "server",
            "-o",
            "docker",
            "-o",
            "tailscale",
            "--module",
            "i915",
            "--module",
            "nvme",
            "--json",
        ],
    )
    assert result.exit_code == 0, result.stdout
    return json.loads(result.stdout)


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "custom Linux ISO builds" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_sections(self) -> None:
        """All configuration sections are shown."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        for section in (
            "Effective Configuration",
            "Paths:",
            "Kernel config:",
            "External runner:",
            "Operational:",
        ):
            assert section in result.stdout
        assert "fallback only" in result.stdout
        assert "(disabled)" in result.stdout

    def test_config_json(self, isolated_env, monkeypatch) -> None:
        """JSON output reflects the environment and hides secrets."""
        monkeypatch.setenv("ISOFORGE_ANTHROPIC_API_KEY", "sk-cli-secret")
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0

        data = json.loads(result.stdout)
        assert data["storage_dir"] == str(isolated_env / "store")
        assert "anthropic_api_key" not in data
        assert "sk-cli-secret" not in result.stdout


class TestCLICatalog:
    """Test distro and overlay commands."""

    def test_distros(self) -> None:
        """Distros are listed in a table."""
        result = runner.invoke(app, ["distros"])
        assert result.exit_code == 0
        assert "Supported distros" in result.stdout
        assert "rockylinux:9" in result.stdout

    def test_distros_json(self) -> None:
        """JSON output lists every distro."""
        result = runner.invoke(app, ["distros", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [d["id"] for d in data] == ["nixos", "debian", "rocky", "proxmox"]

    def test_overlays_check(self) -> None:
        """The overlay dry run shows packages per overlay."""
        result = runner.invoke(
            app, ["overlays", "check", "-d", "rocky", "-o", "docker", "-c", "htop"]
        )
        assert result.exit_code == 0
        assert "4 package(s) via dnf" in result.stdout
        assert "dnf install -y htop" in result.stdout

    def test_overlays_check_json(self) -> None:
        """JSON output matches the dry-run report."""
        result = runner.invoke(
            app, ["overlays", "check", "-o", "tailscale", "-o", "emacs", "--json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["pkg_manager"] == "apt"
        assert [o["status"] for o in data["overlays"]] == ["script", "unknown"]


class TestCLIBuilds:
    """Test build commands."""

    def test_build_run(self, isolated_env) -> None:
        """A local build completes and writes its artifacts."""
        job = run_server_build()

        assert job["status"] == "complete_with_warnings"
        assert job["test_results"] == {"passed": 28, "total": 29}
        artifacts = isolated_env / "store" / "objects" / job["storage_prefix"]
        assert (artifacts / "docker-compose.yml").exists()

    def test_build_run_human_output(self) -> None:
        """Human output names the build and its validation summary."""
        result = runner.invoke(
            app, ["build", "run", "-m", "server", "--module", "i915"]
        )
        assert result.exit_code == 0
        assert "Created build" in result.stdout
        assert "passed" in result.stdout

    def test_build_run_failure_exits_nonzero(self) -> None:
        """A failed pipeline exits with code 1."""
        result = runner.invoke(app, ["build", "run", "--mode", "desktop", "--json"])
        assert result.exit_code == 1
        job = json.loads(result.stdout)
        assert job["status"] == "failed"
        assert job["error"].startswith("Kernel config too small")

    def test_build_run_rejects_unsafe_names(self) -> None:
        """Names with shell metacharacters are refused before any job exists."""
        result = runner.invoke(
            app, ["build", "run", "--mode", 'server"; reboot; echo "', "--json"]
        )
        assert result.exit_code == 2
        assert "Invalid build request" in result.stdout

        result = runner.invoke(app, ["build", "list", "--json"])
        assert json.loads(result.stdout) == []

    def test_build_run_hardware_file(self, isolated_env) -> None:
        """Hardware text is read from a file."""
        hardware = isolated_env / "lspci.txt"
        hardware.write_text("00:02.0 VGA compatible controller: Intel\n")
        result = runner.invoke(
            app,
            ["build", "run", "-m", "server", "--hardware-file", str(hardware), "--json"],
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["ai_model"] == "fallback"

    def test_build_show(self) -> None:
        """A stored job can be shown with its log."""
        job = run_server_build()

        result = runner.invoke(app, ["build", "show", job["id"], "--logs"])
        assert result.exit_code == 0
        assert "complete_with_warnings" in result.stdout
        assert "Logs:" in result.stdout

        result = runner.invoke(app, ["build", "show", job["id"], "--json"])
        assert json.loads(result.stdout)["id"] == job["id"]

    def test_build_show_missing(self) -> None:
        """Unknown jobs exit with code 1."""
        result = runner.invoke(app, ["build", "show", "nope"])
        assert result.exit_code == 1
        assert "Build not found" in result.stdout

    def test_build_list(self) -> None:
        """Jobs are listed and can be filtered by status."""
        result = runner.invoke(app, ["build", "list"])
        assert result.exit_code == 0
        assert "No build jobs found" in result.stdout

        job = run_server_build()
        result = runner.invoke(app, ["build", "list", "--json"])
        assert [j["id"] for j in json.loads(result.stdout)] == [job["id"]]

        result = runner.invoke(app, ["build", "list", "-s", "failed", "--json"])
        assert json.loads(result.stdout) == []

    def test_build_list_invalid_status(self) -> None:
        """Unknown status filters exit with code 1."""
        result = runner.invoke(app, ["build", "list", "-s", "bogus"])
        assert result.exit_code == 1
        assert "Invalid status" in result.stdout

    def test_build_purge(self) -> None:
        """Purge reports how many jobs were removed."""
        run_server_build()
        result = runner.invoke(app, ["build", "purge"])
        assert result.exit_code == 0
        assert "Purged 0 expired build job(s)" in result.stdout
