"""Build artifact generation.

This module handles:
- Rendering build.sh, Dockerfile, docker-compose.yml and README.md from a
  manifest
- Computing text checksums and the checksums.sha256 file
- Content types for artifact downloads

Every generator is a pure function of its inputs: no clock, no randomness,
so repeated calls produce byte-identical output.
"""

from __future__ import annotations

import hashlib

from isoforge.builds.schema import Manifest
from isoforge.catalog.models import PackageCatalog
from isoforge.catalog.resolver import custom_install_command, script_overlays
from isoforge.kernel.fragment import config_lines

DEFAULT_BUILD_IMAGE = "debian:12"
KERNEL_REPO = "https://git.kernel.org/pub/scm/linux/kernel/git/stable/linux.git"
KERNEL_BRANCH = "v6.6"
KERNEL_FRAGMENT_PATH = "/tmp/isoforge.config"
VOLUME_ID = "ISOFORGE"

KERNEL_CONFIG_FILE = "kernel.config"
BUILD_SCRIPT_FILE = "build.sh"
DOCKERFILE_FILE = "Dockerfile"
COMPOSE_FILE = "docker-compose.yml"
MANIFEST_FILE = "manifest.json"
README_FILE = "README.md"
TEST_RESULTS_FILE = "test-results.json"
CHECKSUMS_FILE = "checksums.sha256"

# Downloadable artifacts, in listing order
ARTIFACT_FILES = (
    KERNEL_CONFIG_FILE,
    BUILD_SCRIPT_FILE,
    DOCKERFILE_FILE,
    COMPOSE_FILE,
    MANIFEST_FILE,
    README_FILE,
    TEST_RESULTS_FILE,
    CHECKSUMS_FILE,
)

# Artifacts covered by checksums.sha256
CHECKSUM_FILES = ARTIFACT_FILES[:-1]

_APT_BUILD_DEPS = (
    "build-essential libncurses-dev bison flex libssl-dev libelf-dev bc git wget \\\n"
    "  cpio kmod xorriso grub-pc-bin grub-efi-amd64-bin grub-common mtools dosfstools \\\n"
    "  squashfs-tools ca-certificates initramfs-tools linux-base"
)
_DNF_BUILD_DEPS = (
    "gcc make ncurses-devel bison flex openssl-devel \\\n"
    "  elfutils-libelf-devel bc git wget cpio kmod xorriso grub2-tools grub2-efi-x64 \\\n"
    "  mtools dosfstools squashfs-tools dracut"
)
_NIX_BUILD_DEPS = (
    "gnumake gcc ncurses bison flex openssl elfutils bc git wget cpio kmod "
    "xorriso grub2 mtools dosfstools squashfsTools"
)

_SERVER_DISABLE = (
    "DRM SND WLAN BLUETOOTH INPUT_JOYSTICK USB_SERIAL MEDIA_SUPPORT"
)


def compute_text_hash(text: str) -> str:
    """SHA-256 hex digest of UTF-8 text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def render_checksums(checksums: dict[str, str]) -> str:
    """Render ``<hash>  <file>`` lines in mapping order, for ``sha256sum -c``."""
    return "\n".join(f"{digest}  {name}" for name, digest in checksums.items())


def content_type_for(filename: str) -> str:
    """Content type served for an artifact file name."""
    if filename.endswith(".json"):
        return "application/json"
    if filename.endswith(".yml"):
        return "text/yaml"
    if filename.endswith(".md"):
        return "text/markdown"
    return "text/plain"


def image_name(manifest: Manifest) -> str:
    """Base name of the produced image file."""
    return f"isoforge-{manifest.distro}-{manifest.mode}-{manifest.job_id[:8]}"


def kernel_config_summary(kernel_config: str) -> str:
    """Short fingerprint of a kernel fragment for headers and labels."""
    return (
        f"{len(config_lines(kernel_config))} config lines, "
        f"sha256 {compute_text_hash(kernel_config)[:12]}"
    )


def _grub_menu(manifest: Manifest) -> list[str]:
    title = f"isoforge custom Linux ({manifest.distro} {manifest.mode})"
    return [
        "set timeout=5",
        "set default=0",
        "",
        f'menuentry "{title}" {{',
        "  linux /boot/vmlinuz root=/dev/ram0 rw quiet",
        "  initrd /boot/initrd.gz",
        "}",
        "",
        f'menuentry "{title}, verbose" {{',
        "  linux /boot/vmlinuz root=/dev/ram0 rw loglevel=7",
        "  initrd /boot/initrd.gz",
        "}",
        "",
        'menuentry "Reboot" {',
        "  reboot",
        "}",
    ]


def generate_build_script(
    manifest: Manifest,
    kernel_config: str,
    catalog: PackageCatalog,
) -> str:
    """Generate the standalone build.sh.

    The runtime base image is written once, into ``BASE_IMAGE``; every later
    use goes through the variable.

    Args:
        manifest: Job manifest.
        kernel_config: Kernel fragment text.
        catalog: Package catalog supplying out-of-band installers.

    Returns:
        Bash script text.
    """
    name = image_name(manifest)
    pm = manifest.pkg_manager
    lines = [
        "#!/bin/bash",
        "set -euo pipefail",
        "# " + "=" * 67,
        f"# isoforge image build script, job {manifest.job_id}",
        f"# Distro: {manifest.distro} | Mode: {manifest.mode} | AI: {str(manifest.ai_mode).lower()}",
        f"# Created: {manifest.created}",
        f"# Kernel config: {kernel_config_summary(kernel_config)}",
        "# Run: chmod +x build.sh && ./build.sh",
        "# Requires: Docker (or use the Dockerfile/docker-compose.yml instead)",
        "# " + "=" * 67,
        "",
        f'export JOB_ID="{manifest.job_id}"',
        f'export DISTRO="{manifest.distro}"',
        f'export MODE="{manifest.mode}"',
        f'export BASE_IMAGE="{manifest.base_image}"',
        f'export ISO_NAME="{name}"',
        f'CONTAINER="isoforge-build-{manifest.job_id[:8]}"',
        "",
        "cleanup() { docker rm -f $CONTAINER 2>/dev/null || true; }",
        "trap cleanup EXIT",
        "",
        "# -- Phase 1: Pull base image",
        'echo "[  5%] Pulling $BASE_IMAGE..."',
        'docker pull "$BASE_IMAGE"',
        "",
        "# -- Phase 2: Create build container",
        'echo "[ 10%] Creating build container..."',
        'docker run -d --name $CONTAINER --privileged "$BASE_IMAGE" sleep infinity',
        "",
        "# -- Phase 3: Install build dependencies",
        'echo "[ 15%] Installing build dependencies..."',
    ]

    if pm == "dnf":
        lines.append(f'docker exec $CONTAINER bash -c "dnf install -y {_DNF_BUILD_DEPS}"')
    elif pm == "nix":
        nix_deps = " ".join(f"nixpkgs.{p}" for p in _NIX_BUILD_DEPS.split())
        lines.append(f"docker exec $CONTAINER nix-env -iA {nix_deps}")
    else:
        lines.append(
            'docker exec $CONTAINER bash -c "apt-get update -qq && '
            "DEBIAN_FRONTEND=noninteractive apt-get install -y --no-install-recommends \\\n"
            f'  {_APT_BUILD_DEPS}"'
        )
    lines.append("")

    packages = list(manifest.packages)
    if packages:
        lines.append("# -- Phase 4: Install overlay packages")
        lines.append(
            f'echo "[ 20%] Installing {len(packages)} overlay packages via {pm}..."'
        )
        if pm == "dnf":
            lines.append(f"docker exec $CONTAINER dnf install -y {' '.join(packages)}")
        elif pm == "nix":
            lines.extend(
                f"docker exec $CONTAINER nix-env -iA nixpkgs.{p}" for p in packages
            )
        else:
            lines.append(
                'docker exec $CONTAINER bash -c "DEBIAN_FRONTEND=noninteractive '
                f'apt-get install -y --no-install-recommends {" ".join(packages)}"'
            )
        lines.append("")

    if manifest.custom_software:
        lines.append("# -- Phase 5: Install custom software")
        for sw in manifest.custom_software:
            lines.append(f'echo "[ 30%] Installing custom: {sw}"')
            lines.append(
                f'docker exec $CONTAINER bash -c "{custom_install_command(pm, sw)}"'
                f' || echo "WARN: {sw} not available in repos"'
            )
        lines.append("")

    installers = [
        (overlay_id, catalog.script_installers[overlay_id])
        for overlay_id in script_overlays(catalog, pm, list(manifest.overlays))
        if overlay_id in catalog.script_installers
    ]
    if installers:
        lines.append("# -- Phase 6: Script-installed overlays")
        for _, installer in installers:
            lines.append(f'echo "[ 35%] Installing {installer.label}..."')
            lines.append(
                f'docker exec $CONTAINER bash -c "{installer.command}"'
                f' || echo "WARN: {installer.label} install failed"'
            )
        lines.append("")

    lines.extend(
        [
            "# -- Phase 7: Clone and compile kernel",
            f'echo "[ 40%] Cloning Linux kernel {KERNEL_BRANCH} (stable)..."',
            'docker exec $CONTAINER bash -c "cd /usr/src && for i in 1 2 3; do '
            f'git clone --depth 1 --branch {KERNEL_BRANCH} {KERNEL_REPO} && break || sleep 10; done"',
            "",
            'echo "[ 45%] Applying kernel config fragment..."',
            'SCRIPT_DIR="$(cd "$(dirname "$0")" && pwd)"',
            f'if [ -f "$SCRIPT_DIR/{KERNEL_CONFIG_FILE}" ]; then',
            f'  docker cp "$SCRIPT_DIR/{KERNEL_CONFIG_FILE}" $CONTAINER:{KERNEL_FRAGMENT_PATH}',
            '  docker exec $CONTAINER bash -c "cd /usr/src/linux && make defconfig && '
            f'scripts/kconfig/merge_config.sh .config {KERNEL_FRAGMENT_PATH}"',
            "else",
            f'  echo "WARN: {KERNEL_CONFIG_FILE} not found, using defconfig"',
            '  docker exec $CONTAINER bash -c "cd /usr/src/linux && make defconfig"',
            "fi",
            "",
        ]
    )

    if manifest.ai_mode and manifest.modules:
        lines.append(
            f'echo "[ 50%] Enabling {len(manifest.modules)} hardware-detected modules..."'
        )
        lines.extend(
            'docker exec $CONTAINER bash -c "cd /usr/src/linux && '
            f'scripts/config --enable {module.upper()}" 2>/dev/null || true'
            for module in manifest.modules
        )
        if manifest.mode == "server":
            disable_flags = " ".join(f"--disable {opt}" for opt in _SERVER_DISABLE.split())
            lines.append('echo "[ 52%] Disabling desktop subsystems for server mode..."')
            lines.append(
                'docker exec $CONTAINER bash -c "cd /usr/src/linux && '
                f'scripts/config {disable_flags}"'
            )
        lines.append("")

    lines.extend(
        [
            'echo "[ 55%] Compiling kernel (this takes 10-30 minutes)..."',
            'docker exec $CONTAINER bash -c "cd /usr/src/linux && '
            'make -j\\$(nproc) bzImage modules 2>&1 | tail -20"',
            "",
            'echo "[ 70%] Installing kernel modules..."',
            'docker exec $CONTAINER bash -c "cd /usr/src/linux && '
            'make modules_install INSTALL_MOD_PATH=/rootfs"',
            "",
            "# -- Phase 8: Assemble root filesystem",
            'echo "[ 75%] Assembling root filesystem..."',
            'docker exec $CONTAINER bash -c "mkdir -p '
            '/rootfs/{boot,bin,sbin,etc,proc,sys,dev,tmp,var,usr,run,lib,lib64}"',
            'docker exec $CONTAINER bash -c "cp /usr/src/linux/arch/x86/boot/bzImage '
            '/rootfs/boot/vmlinuz-isoforge"',
            "",
            'echo "[ 78%] Creating initramfs..."',
            'docker exec $CONTAINER bash -c "cd /rootfs && find . -print0 | '
            'cpio --null -o -H newc 2>/dev/null | gzip -9 > /boot-initrd.gz"',
            "",
            "# -- Phase 9: Create bootable ISO",
            'echo "[ 85%] Building ISO filesystem..."',
            'docker exec $CONTAINER bash -c "mkdir -p /iso/{boot/grub,live,EFI/BOOT}"',
            'docker exec $CONTAINER bash -c "cp /rootfs/boot/vmlinuz-isoforge /iso/boot/vmlinuz"',
            'docker exec $CONTAINER bash -c "cp /boot-initrd.gz /iso/boot/initrd.gz"',
            "",
            "# GRUB configuration (BIOS + EFI)",
            "docker exec -i $CONTAINER bash -c 'cat > /iso/boot/grub/grub.cfg' << 'GRUBEOF'",
            *_grub_menu(manifest),
            "GRUBEOF",
            "",
            'echo "[ 90%] Creating bootable ISO with GRUB..."',
            'docker exec $CONTAINER bash -c "grub-mkrescue -o /output.iso /iso -- '
            f"-volid {VOLUME_ID} 2>&1 | tail -5 || xorriso -as mkisofs -R -J -V {VOLUME_ID} "
            "-b boot/grub/i386-pc/eltorito.img -no-emul-boot -boot-load-size 4 "
            '-boot-info-table -o /output.iso /iso 2>&1 | tail -5"',
            "",
            "# -- Phase 10: Verify and export",
            'echo "[ 95%] Verifying ISO..."',
            'docker exec $CONTAINER bash -c "ls -lh /output.iso"',
            'docker exec $CONTAINER bash -c "sha256sum /output.iso | tee /output.iso.sha256"',
            "",
            'echo "[100%] Exporting ISO..."',
            "mkdir -p ./output",
            'docker cp $CONTAINER:/output.iso "./output/$ISO_NAME.iso"',
            'docker cp $CONTAINER:/output.iso.sha256 "./output/$ISO_NAME.iso.sha256"',
            "",
            'echo ""',
            'echo " BUILD COMPLETE"',
            'echo " ISO: ./output/$ISO_NAME.iso"',
            'echo " SHA: ./output/$ISO_NAME.iso.sha256"',
            'echo ""',
            'echo " Flash to USB:"',
            'echo "   sudo dd if=./output/$ISO_NAME.iso of=/dev/sdX bs=4M status=progress"',
            "",
        ]
    )
    return "\n".join(lines)


def generate_dockerfile(
    manifest: Manifest,
    kernel_config: str,
    build_image: str = DEFAULT_BUILD_IMAGE,
) -> str:
    """Generate the multi-stage Dockerfile.

    The build stage always uses the fixed build image; the target distro
    only changes what is installed into the rootfs.

    Args:
        manifest: Job manifest.
        kernel_config: Kernel fragment text (copied in as kernel.config).
        build_image: Build environment image.

    Returns:
        Dockerfile text.
    """
    lines = [
        f"FROM {build_image} AS builder",
        "",
        f'LABEL io.isoforge.job-id="{manifest.job_id}"',
        f'LABEL io.isoforge.target="{manifest.distro}/{manifest.mode}"',
        f'LABEL io.isoforge.kernel-config="{kernel_config_summary(kernel_config)}"',
        "",
        "# Build dependencies (same for all target distros)",
        "RUN apt-get update && DEBIAN_FRONTEND=noninteractive apt-get install -y "
        "--no-install-recommends \\",
        "    build-essential libncurses-dev bison flex libssl-dev libelf-dev \\",
        "    bc git wget cpio kmod xorriso grub-pc-bin grub-efi-amd64-bin grub-common \\",
        "    mtools dosfstools squashfs-tools ca-certificates debootstrap \\",
        "    && rm -rf /var/lib/apt/lists/*",
        "",
        f"# Clone kernel source ({KERNEL_BRANCH} LTS), retrying transient mirror failures",
        "RUN for i in 1 2 3; do git clone --depth 1 --branch "
        f"{KERNEL_BRANCH} {KERNEL_REPO} /usr/src/linux && break || sleep 10; done",
        "",
        "# x86_64 defconfig with the generated fragment merged on top",
        "RUN cd /usr/src/linux && make defconfig",
        f"COPY {KERNEL_CONFIG_FILE} {KERNEL_FRAGMENT_PATH}",
        "RUN cd /usr/src/linux && scripts/kconfig/merge_config.sh .config "
        f"{KERNEL_FRAGMENT_PATH}",
        "",
        "# Compile kernel + modules",
        "RUN cd /usr/src/linux && make -j$(nproc) bzImage modules 2>&1 | tail -5",
        "",
        "# Install kernel and modules into rootfs",
        "RUN mkdir -p /rootfs/boot /rootfs/lib/modules",
        "RUN cp /usr/src/linux/arch/x86/boot/bzImage /rootfs/boot/vmlinuz-isoforge",
        "RUN cd /usr/src/linux && make modules_install INSTALL_MOD_PATH=/rootfs",
        "",
    ]

    all_packages = [*manifest.packages, *manifest.custom_software]
    if all_packages:
        lines.extend(
            [
                "# Install overlay packages into rootfs (best effort)",
                "RUN apt-get update && DEBIAN_FRONTEND=noninteractive apt-get install -y "
                f"--no-install-recommends {' '.join(all_packages)} || true",
                "RUN rm -rf /var/lib/apt/lists/*",
                "",
            ]
        )

    grub_cfg = "\\n".join(_grub_menu(manifest)[:7])
    lines.extend(
        [
            "# Create ISO filesystem structure",
            "RUN mkdir -p /iso/boot/grub /iso/live",
            "RUN cp /rootfs/boot/vmlinuz-isoforge /iso/boot/vmlinuz",
            "",
            "# Create initramfs with modules and rootfs",
            "RUN cd /rootfs && find . | cpio -o -H newc | gzip > /iso/boot/initrd.gz",
            "",
            "# GRUB config for BIOS + EFI boot",
            f"RUN printf '{grub_cfg}\\n' > /iso/boot/grub/grub.cfg",
            "",
            "# Build bootable ISO (BIOS + EFI)",
            "RUN grub-mkrescue -o /output.iso /iso 2>/dev/null || xorriso -as mkisofs "
            "-R -J -b boot/grub/i386-pc/eltorito.img -no-emul-boot -boot-load-size 4 "
            "-boot-info-table -o /output.iso /iso",
            "",
            "# Checksum",
            "RUN sha256sum /output.iso > /output.iso.sha256",
            "",
            'CMD ["cat", "/output.iso"]',
        ]
    )
    return "\n".join(lines)


def generate_compose(manifest: Manifest) -> str:
    """Generate docker-compose.yml that builds and exports the image."""
    name = image_name(manifest)
    return (
        "services:\n"
        "  builder:\n"
        "    build:\n"
        "      context: .\n"
        f"      dockerfile: {DOCKERFILE_FILE}\n"
        "    volumes:\n"
        "      - ./output:/output\n"
        "    command: >\n"
        f'      sh -c "cp /output.iso /output/{name}.iso &&\n'
        f"             cp /output.iso.sha256 /output/{name}.iso.sha256 &&\n"
        "             echo 'Build complete!'\"\n"
    )


def _join_or_none(values: tuple[str, ...]) -> str:
    return ", ".join(values) or "none"


def generate_readme(manifest: Manifest) -> str:
    """Generate README.md with the configuration and three ways to build."""
    tag = f"isoforge-{manifest.distro}-{manifest.mode}"
    return f"""# isoforge build {manifest.job_id}

## Build Configuration
- **Distro**: {manifest.distro}
- **Mode**: {manifest.mode}
- **Base Image**: {manifest.base_image}
- **Package Manager**: {manifest.pkg_manager}
- **Packages**: {_join_or_none(manifest.packages)}
- **Custom Software**: {_join_or_none(manifest.custom_software)}
- **Overlays**: {_join_or_none(manifest.overlays)}
- **AI Model**: {manifest.ai_model}
- **Kernel Config Lines**: {manifest.kernel_config_lines}
- **Created**: {manifest.created}

## How to Build

### Option 1: Docker Compose (recommended)
```bash
docker compose up --build
# ISO will be in ./output/
```

### Option 2: Manual Docker Build
```bash
docker build -t {tag} .
docker run --rm -v $(pwd)/output:/output {tag} \\
  sh -c "cp /output.iso /output/ && cp /output.iso.sha256 /output/"
```

### Option 3: Run build.sh directly (requires Docker)
```bash
chmod +x build.sh
./build.sh
```

## Files
- `{KERNEL_CONFIG_FILE}`: kernel config fragment ({manifest.kernel_config_lines} lines)
- `{BUILD_SCRIPT_FILE}`: standalone build script
- `{DOCKERFILE_FILE}`: multi-stage Docker build
- `{COMPOSE_FILE}`: one-command build
- `{MANIFEST_FILE}`: build metadata
- `{TEST_RESULTS_FILE}`: automated validation results
- `{CHECKSUMS_FILE}`: SHA-256 checksums of the artifacts

## Verification
```bash
sha256sum -c {CHECKSUMS_FILE}
```
"""


__all__ = [
    "ARTIFACT_FILES",
    "BUILD_SCRIPT_FILE",
    "CHECKSUMS_FILE",
    "CHECKSUM_FILES",
    "COMPOSE_FILE",
    "DEFAULT_BUILD_IMAGE",
    "DOCKERFILE_FILE",
    "KERNEL_BRANCH",
    "KERNEL_CONFIG_FILE",
    "KERNEL_REPO",
    "MANIFEST_FILE",
    "README_FILE",
    "TEST_RESULTS_FILE",
    "compute_text_hash",
    "content_type_for",
    "generate_build_script",
    "generate_compose",
    "generate_dockerfile",
    "generate_readme",
    "image_name",
    "kernel_config_summary",
    "render_checksums",
]
