"""Rule-based validation suite over generated build artifacts.

Checks are advisory: a failing check demotes the final status to
``complete_with_warnings`` but never fails the pipeline. Check names and
their order are stable because test-results.json is consumed by clients.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from isoforge.builds.artifacts import DEFAULT_BUILD_IMAGE
from isoforge.builds.schema import Manifest
from isoforge.catalog.models import PackageCatalog
from isoforge.kernel.fragment import config_lines, parse_fragment
from isoforge.types import BuildMode, TestResult

MUST_NOT_DISABLE = (
    "CONFIG_NET",
    "CONFIG_INET",
    "CONFIG_EXT4_FS",
    "CONFIG_PROC_FS",
    "CONFIG_SYSFS",
    "CONFIG_PRINTK",
)
SERVER_DISABLED = ("CONFIG_DRM", "CONFIG_SND")
SERVER_ENABLED = ("CONFIG_NETFILTER", "CONFIG_CGROUPS")
DESKTOP_ENABLED = ("CONFIG_DRM", "CONFIG_SND")
MIN_CONFIG_LINES = 20
ISO_TOOLS = ("grub-mkrescue", "xorriso", "mkisofs")

_ENABLED_VALUES = ("y", "m")


def _is_enabled(options: dict[str, str], name: str) -> bool:
    return options.get(name) in _ENABLED_VALUES


def _subsystem_enabled(options: dict[str, str], name: str) -> bool:
    """Whether an option or any of its ``<name>_*`` drivers is built."""
    prefix = f"{name}_"
    return _is_enabled(options, name) or any(
        key.startswith(prefix) and value in _ENABLED_VALUES
        for key, value in options.items()
    )


def _kernel_checks(manifest: Manifest, kernel_config: str) -> list[TestResult]:
    options = parse_fragment(kernel_config)
    results: list[TestResult] = []

    for cfg in MUST_NOT_DISABLE:
        disabled = options.get(cfg) == "n"
        results.append(
            TestResult(
                f"kernel_config_{cfg}",
                not disabled,
                f"{cfg} DISABLED, kernel may not boot"
                if disabled
                else f"{cfg} not disabled (defconfig default OK)",
            )
        )

    if manifest.mode == BuildMode.SERVER.value:
        for cfg in SERVER_DISABLED:
            ok = not _is_enabled(options, cfg)
            results.append(
                TestResult(
                    f"server_disable_{cfg}",
                    ok,
                    f"{cfg} correctly disabled for server"
                    if ok
                    else f"{cfg} should be disabled for server mode",
                )
            )
        for cfg in SERVER_ENABLED:
            ok = options.get(cfg) == "y"
            results.append(
                TestResult(
                    f"server_enable_{cfg}",
                    ok,
                    f"{cfg} enabled for server"
                    if ok
                    else f"{cfg} should be enabled for server mode",
                )
            )
    else:
        for cfg in DESKTOP_ENABLED:
            ok = _subsystem_enabled(options, cfg)
            results.append(
                TestResult(
                    f"desktop_enable_{cfg}",
                    ok,
                    f"{cfg} enabled for desktop"
                    if ok
                    else f"{cfg} should be enabled for desktop mode",
                )
            )

    has_localversion = "CONFIG_LOCALVERSION" in options
    results.append(
        TestResult(
            "kernel_localversion",
            has_localversion,
            "LOCALVERSION set" if has_localversion else "LOCALVERSION missing",
        )
    )

    line_count = len(config_lines(kernel_config))
    results.append(
        TestResult(
            "kernel_config_size",
            line_count >= MIN_CONFIG_LINES,
            f"{line_count} config lines (min {MIN_CONFIG_LINES})",
        )
    )
    return results


def _check(name: str, ok: bool, passed: str, failed: str) -> TestResult:
    return TestResult(name, ok, passed if ok else failed)


def _script_checks(manifest: Manifest, build_script: str) -> list[TestResult]:
    has_make = "make" in build_script and "bzImage" in build_script
    return [
        _check(
            "script_shebang",
            build_script.startswith("#!/bin/bash"),
            "Has bash shebang",
            "Missing shebang",
        ),
        _check(
            "script_strict_mode",
            "set -euo pipefail" in build_script,
            "Strict mode enabled",
            "Missing strict mode",
        ),
        _check(
            "script_base_image",
            bool(manifest.base_image) and manifest.base_image in build_script,
            f"References {manifest.base_image}",
            f"Missing base image {manifest.base_image}",
        ),
        _check(
            "script_kernel_build",
            has_make,
            "Kernel compilation present",
            "Missing kernel compilation",
        ),
        _check(
            "script_iso_creation",
            any(tool in build_script for tool in ISO_TOOLS),
            "ISO creation present",
            "Missing ISO creation step",
        ),
        _check(
            "script_checksum",
            "sha256sum" in build_script,
            "SHA256 checksum present",
            "Missing checksum step",
        ),
    ]


def _dockerfile_checks(dockerfile: str) -> list[TestResult]:
    return [
        _check(
            "dockerfile_from",
            "FROM " in dockerfile,
            "Has FROM directive",
            "Missing FROM",
        ),
        _check(
            "dockerfile_kernel_clone",
            "git clone" in dockerfile and "linux" in dockerfile,
            "Kernel source clone present",
            "Missing kernel clone",
        ),
        _check(
            "dockerfile_make",
            "make" in dockerfile
            and ("bzImage" in dockerfile or "olddefconfig" in dockerfile),
            "Kernel make present",
            "Missing make step",
        ),
        _check(
            "dockerfile_config_copy",
            "COPY kernel.config" in dockerfile,
            "Kernel config COPY present",
            "Missing kernel config COPY",
        ),
        _check(
            "dockerfile_bootloader",
            "grub" in dockerfile or "xorriso" in dockerfile,
            "Bootloader/ISO step present",
            "Missing bootloader step",
        ),
    ]


def _package_checks(manifest: Manifest, catalog: PackageCatalog) -> list[TestResult]:
    pkg_map = catalog.package_map(manifest.pkg_manager)
    results = []
    for overlay in manifest.overlays:
        packages = pkg_map.get(overlay)
        if packages is None:
            results.append(
                TestResult(f"pkg_resolve_{overlay}", False, f"{overlay}: unknown overlay")
            )
        else:
            detail = ", ".join(packages) if packages else "script-installed"
            results.append(TestResult(f"pkg_resolve_{overlay}", True, f"{overlay}: {detail}"))
    return results


def _manifest_checks(manifest: Manifest, catalog: PackageCatalog) -> list[TestResult]:
    distro_ok = manifest.distro in catalog.distro_ids()
    modes = [m.value for m in BuildMode]
    mode_ok = manifest.mode in modes
    complete = all(
        [
            manifest.job_id,
            manifest.distro,
            manifest.mode,
            manifest.base_image,
            manifest.pkg_manager,
        ]
    )
    return [
        _check(
            "distro_valid",
            distro_ok,
            f"{manifest.distro} is supported",
            f"{manifest.distro} is not a supported distro",
        ),
        _check(
            "mode_valid",
            mode_ok,
            f"{manifest.mode} is valid",
            f"{manifest.mode} is not a valid mode",
        ),
        _check(
            "manifest_complete",
            complete,
            "Manifest has all required fields",
            "Manifest missing fields",
        ),
    ]


def _cross_checks(dockerfile: str, build_image: str) -> list[TestResult]:
    pattern = re.compile(rf"^FROM {re.escape(build_image)}(\s|$)")
    ok = any(pattern.match(line) for line in dockerfile.splitlines())
    return [
        _check(
            "cross_dockerfile_base",
            ok,
            f"Dockerfile uses {build_image} build container",
            f"Dockerfile missing {build_image} build base",
        )
    ]


def run_build_validation(
    manifest: Manifest,
    kernel_config: str,
    build_script: str,
    dockerfile: str,
    catalog: PackageCatalog,
) -> list[TestResult]:
    """Run every validation rule, in a fixed order.

    Args:
        manifest: Job manifest.
        kernel_config: Kernel fragment text.
        build_script: build.sh text.
        dockerfile: Dockerfile text.
        catalog: Package catalog used for overlay and distro checks.

    Returns:
        Ordered list of TestResult.
    """
    build_image = catalog.build_image or DEFAULT_BUILD_IMAGE
    return [
        *_kernel_checks(manifest, kernel_config),
        *_script_checks(manifest, build_script),
        *_dockerfile_checks(dockerfile),
        *_package_checks(manifest, catalog),
        *_manifest_checks(manifest, catalog),
        *_cross_checks(dockerfile, build_image),
    ]


def summarize(results: Iterable[TestResult]) -> tuple[int, int]:
    """Return ``(passed, total)``."""
    results = list(results)
    return sum(1 for r in results if r.passed), len(results)


def format_summary(results: Iterable[TestResult]) -> str:
    """One-line pass/fail summary used in job logs."""
    return ", ".join(f"{'✓' if r.passed else '✗'} {r.name}" for r in results)


__all__ = [
    "MIN_CONFIG_LINES",
    "MUST_NOT_DISABLE",
    "format_summary",
    "run_build_validation",
    "summarize",
]
