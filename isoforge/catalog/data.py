"""Built-in package catalog.

Real package names per package manager. Overlays mapped to an empty list are
installed from a vendor script or an extra repository instead of by name.
"""

from isoforge.catalog.models import DistroSchema, PackageCatalog, ScriptInstaller

DISTROS = [
    DistroSchema(
        id="nixos",
        name="NixOS",
        tagline="Reproducible, declarative",
        pkg_manager="nix",
        base_image="nixos/nix:latest",
    ),
    DistroSchema(
        id="debian",
        name="Debian",
        tagline="The universal operating system",
        pkg_manager="apt",
        base_image="debian:12-slim",
    ),
    DistroSchema(
        id="rocky",
        name="Rocky Linux",
        tagline="Enterprise RHEL-compatible",
        pkg_manager="dnf",
        base_image="rockylinux:9",
    ),
    DistroSchema(
        id="proxmox",
        name="Proxmox VE",
        tagline="Enterprise virtualization platform",
        pkg_manager="apt",
        base_image="debian:12-slim",
    ),
]

APT_PACKAGES: dict[str, list[str]] = {
    "docker": ["docker.io", "containerd"],
    "k3s": [],
    "podman": ["podman", "buildah", "skopeo"],
    "tailscale": [],
    "caddy": ["caddy"],
    "nginx": ["nginx"],
    "postgres": ["postgresql-16", "postgresql-client-16"],
    "redis": ["redis-server"],
    "mysql": ["mariadb-server", "mariadb-client"],
    "prometheus": ["prometheus"],
    "grafana": [],
    "netdata": [],
    "neovim": ["neovim"],
    "vscode": [],
    "rustup": [],
    "nodejs": ["nodejs", "npm"],
    "golang": ["golang-go"],
    "obs": ["obs-studio"],
    "blender": ["blender"],
    "openclaw": [],
    "steam": [],
    "lutris": ["lutris"],
    "qemu": ["qemu-system-x86", "qemu-utils", "ovmf"],
    "libvirt": ["libvirt-daemon-system", "virtinst", "virt-manager"],
    "lxc": ["lxc", "lxd-installer"],
    "tacticalrmm": [],
    "meshcentral": ["nodejs", "npm"],
    "ansible": ["ansible"],
    "salt": ["salt-minion"],
    "puppet": ["puppet-agent"],
    "zabbix": ["zabbix-agent2"],
    "kali": [],
    "scientific": [],
    "parrot": [],
    "devuan": [],
    "alma": [],
}

DNF_PACKAGES: dict[str, list[str]] = {
    "docker": ["docker-ce", "docker-ce-cli", "containerd.io", "docker-compose-plugin"],
    "k3s": [],
    "podman": ["podman", "buildah", "skopeo"],
    "tailscale": [],
    "caddy": ["caddy"],
    "nginx": ["nginx"],
    "postgres": ["postgresql-server", "postgresql"],
    "redis": ["redis"],
    "mysql": ["mariadb-server", "mariadb"],
    "prometheus": [],
    "grafana": [],
    "netdata": [],
    "neovim": ["neovim"],
    "vscode": [],
    "rustup": [],
    "nodejs": ["nodejs", "npm"],
    "golang": ["golang"],
    "obs": [],
    "blender": ["blender"],
    "openclaw": [],
    "steam": [],
    "lutris": ["lutris"],
    "qemu": ["qemu-kvm", "qemu-img", "edk2-ovmf"],
    "libvirt": ["libvirt", "virt-install", "virt-manager"],
    "lxc": ["lxc", "lxc-templates"],
    "tacticalrmm": [],
    "meshcentral": ["nodejs", "npm"],
    "ansible": ["ansible-core"],
    "salt": ["salt-minion"],
    "puppet": ["puppet-agent"],
    "zabbix": ["zabbix-agent2"],
    "kali": [],
    "scientific": [],
    "parrot": [],
    "devuan": [],
    "alma": [],
}

NIX_PACKAGES: dict[str, list[str]] = {
    "docker": ["docker"],
    "k3s": ["k3s"],
    "podman": ["podman"],
    "tailscale": ["tailscale"],
    "caddy": ["caddy"],
    "nginx": ["nginx"],
    "postgres": ["postgresql_16"],
    "redis": ["redis"],
    "mysql": ["mariadb"],
    "prometheus": ["prometheus"],
    "grafana": ["grafana"],
    "netdata": ["netdata"],
    "neovim": ["neovim"],
    "vscode": ["vscode"],
    "rustup": ["rustup"],
    "nodejs": ["nodejs_20"],
    "golang": ["go"],
    "obs": ["obs-studio"],
    "blender": ["blender"],
    "openclaw": [],
    "steam": ["steam"],
    "lutris": ["lutris"],
    "qemu": ["qemu_full"],
    "libvirt": ["libvirt", "virt-manager"],
    "lxc": ["lxc", "lxd"],
    "tacticalrmm": [],
    "meshcentral": ["nodejs_20"],
    "ansible": ["ansible"],
    "salt": ["salt"],
    "puppet": [],
    "zabbix": ["zabbix-agent"],
    "kali": [],
    "scientific": [],
    "parrot": [],
    "devuan": [],
    "alma": [],
}

SCRIPT_INSTALLERS: dict[str, ScriptInstaller] = {
    "k3s": ScriptInstaller(
        label="K3s",
        command="curl -sfL https://get.k3s.io | INSTALL_K3S_SKIP_START=true sh -",
    ),
    "tailscale": ScriptInstaller(
        label="Tailscale",
        command="curl -fsSL https://tailscale.com/install.sh | sh",
    ),
    "rustup": ScriptInstaller(
        label="Rust toolchain",
        command="curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh -s -- -y",
    ),
    "netdata": ScriptInstaller(
        label="Netdata",
        command=(
            "curl -fsSL https://get.netdata.cloud/kickstart.sh"
            " | sh -s -- --dont-wait --dont-start-it"
        ),
    ),
    "grafana": ScriptInstaller(
        label="Grafana",
        command=(
            "apt-get install -y apt-transport-https software-properties-common"
            " && curl -fsSL https://apt.grafana.com/gpg.key"
            " | gpg --dearmor -o /etc/apt/keyrings/grafana.gpg"
            " && echo 'deb [signed-by=/etc/apt/keyrings/grafana.gpg]"
            " https://apt.grafana.com stable main'"
            " > /etc/apt/sources.list.d/grafana.list"
            " && apt-get update && apt-get install -y grafana"
        ),
    ),
    "tacticalrmm": ScriptInstaller(
        label="Tactical RMM agent",
        command=(
            "mkdir -p /opt/tacticalrmm && echo 'Tactical RMM agent placeholder,"
            " configure the mesh URL at first boot' > /opt/tacticalrmm/README"
        ),
    ),
}

DEFAULT_CATALOG = PackageCatalog(
    build_image="debian:12",
    distros=DISTROS,
    packages={"apt": APT_PACKAGES, "dnf": DNF_PACKAGES, "nix": NIX_PACKAGES},
    script_installers=SCRIPT_INSTALLERS,
)

__all__ = ["DEFAULT_CATALOG"]
