"""Configuration loading and machine store persistence for the VirtualBox driver."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Dict

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vboxdriver.constants import (
    DEFAULT_BOOT2DOCKER_IMPORT_VM,
    DEFAULT_BOOT2DOCKER_URL,
    DEFAULT_CPU,
    DEFAULT_DISK_SIZE,
    DEFAULT_HOSTONLY_CIDR,
    DEFAULT_HOSTONLY_NICTYPE,
    DEFAULT_HOSTONLY_PROMISC,
    DEFAULT_MEMORY,
    MACHINE_CONFIG_NAME,
    MACHINES_DIRNAME,
)
from vboxdriver.exceptions import MachineNotFoundError, ManagerError
from vboxdriver.models import MachineConfig
from vboxdriver.network import parse_and_validate_cidr
from vboxdriver.utils import ensure_directory, get_env, get_env_bool, log, parse_int_env

PROMISC_MODES = ("deny", "allow-vms", "allow-all")

# (env var, MachineConfig field, CLI flag)
ENV_OPTIONS = (
    ("VIRTUALBOX_CPU_COUNT", "cpu", "--virtualbox-cpu-count"),
    ("VIRTUALBOX_MEMORY_SIZE", "memory", "--virtualbox-memory"),
    ("VIRTUALBOX_DISK_SIZE", "disk_size", "--virtualbox-disk-size"),
    ("VIRTUALBOX_BOOT2DOCKER_URL", "boot2docker_url", "--virtualbox-boot2docker-url"),
    ("VIRTUALBOX_BOOT2DOCKER_IMPORT_VM", "boot2docker_import_vm", "--virtualbox-import-boot2docker-vm"),
    ("VIRTUALBOX_HOST_DNS_RESOLVER", "host_dns_resolver", "--virtualbox-host-dns-resolver"),
    ("VIRTUALBOX_HOSTONLY_CIDR", "hostonly_cidr", "--virtualbox-hostonly-cidr"),
    ("VIRTUALBOX_HOSTONLY_NIC_TYPE", "hostonly_nictype", "--virtualbox-hostonly-nictype"),
    ("VIRTUALBOX_HOSTONLY_NIC_PROMISC", "hostonly_promisc", "--virtualbox-hostonly-nicpromisc"),
    ("VIRTUALBOX_NO_SHARE", "no_share", "--virtualbox-no-share"),
    ("VIRTUALBOX_DNS_PROXY", "dns_proxy", "--virtualbox-dns-proxy"),
    ("VIRTUALBOX_NO_VTX_CHECK", "no_vtx_check", "--virtualbox-no-vtx-check"),
)


def machine_dir(store_path: Path, name: str) -> Path:
    return Path(store_path) / MACHINES_DIRNAME / name


def machine_config_path(store_path: Path, name: str) -> Path:
    return machine_dir(store_path, name) / MACHINE_CONFIG_NAME


def validate_config(cfg: MachineConfig) -> MachineConfig:
    if not cfg.machine_name or "/" in cfg.machine_name or cfg.machine_name in (".", ".."):
        raise ManagerError(f"Invalid machine name '{cfg.machine_name}'")
    if cfg.memory < 1:
        raise ManagerError(f"Memory must be >= 1 MB (got {cfg.memory})")
    if cfg.disk_size < 1:
        raise ManagerError(f"Disk size must be >= 1 MB (got {cfg.disk_size})")
    if not isinstance(cfg.ssh_port, int) or not 0 <= cfg.ssh_port <= 65535:
        raise ManagerError(f"SSH port must be between 0 and 65535 (got {cfg.ssh_port})")
    parse_and_validate_cidr(cfg.hostonly_cidr)
    if cfg.hostonly_promisc not in PROMISC_MODES:
        raise ManagerError(
            f"Unsupported promiscuous mode '{cfg.hostonly_promisc}'. Supported: {', '.join(PROMISC_MODES)}"
        )
    return cfg


def parse_env(machine_name: str, store_path: Path) -> MachineConfig:
    """Build a machine configuration from VIRTUALBOX_* environment variables."""
    cfg = MachineConfig(
        machine_name=machine_name,
        store_path=store_path,
        # Zero or below means "all host CPUs".
        cpu=parse_int_env("VIRTUALBOX_CPU_COUNT", str(DEFAULT_CPU), min_val=-1),
        memory=parse_int_env("VIRTUALBOX_MEMORY_SIZE", str(DEFAULT_MEMORY)),
        disk_size=parse_int_env("VIRTUALBOX_DISK_SIZE", str(DEFAULT_DISK_SIZE)),
        boot2docker_url=(get_env("VIRTUALBOX_BOOT2DOCKER_URL", DEFAULT_BOOT2DOCKER_URL) or "").strip(),
        boot2docker_import_vm=(
            get_env("VIRTUALBOX_BOOT2DOCKER_IMPORT_VM", DEFAULT_BOOT2DOCKER_IMPORT_VM) or ""
        ).strip(),
        host_dns_resolver=get_env_bool("VIRTUALBOX_HOST_DNS_RESOLVER", False),
        hostonly_cidr=(get_env("VIRTUALBOX_HOSTONLY_CIDR") or DEFAULT_HOSTONLY_CIDR).strip(),
        hostonly_nictype=(get_env("VIRTUALBOX_HOSTONLY_NIC_TYPE") or DEFAULT_HOSTONLY_NICTYPE).strip(),
        hostonly_promisc=(get_env("VIRTUALBOX_HOSTONLY_NIC_PROMISC") or DEFAULT_HOSTONLY_PROMISC)
        .strip()
        .lower(),
        no_share=get_env_bool("VIRTUALBOX_NO_SHARE", False),
        dns_proxy=get_env_bool("VIRTUALBOX_DNS_PROXY", False),
        no_vtx_check=get_env_bool("VIRTUALBOX_NO_VTX_CHECK", False),
    )
    return validate_config(cfg)


def config_to_dict(cfg: MachineConfig) -> Dict[str, Any]:
    data = dataclasses.asdict(cfg)
    data["store_path"] = str(cfg.store_path)
    return data


def save_machine(cfg: MachineConfig) -> Path:
    path = machine_config_path(cfg.store_path, cfg.machine_name)
    ensure_directory(path.parent)
    path.write_text(yaml.safe_dump(config_to_dict(cfg), sort_keys=True))
    log("DEBUG", f"Saved machine config to {path}")
    return path


def load_machine(store_path: Path, name: str) -> MachineConfig:
    path = machine_config_path(store_path, name)
    if not path.exists():
        raise MachineNotFoundError(name)
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ManagerError(f"Invalid machine config {path}: {exc}")
    if not isinstance(data, dict):
        raise ManagerError(f"Invalid machine config {path}: expected a mapping")

    known = {field.name for field in dataclasses.fields(MachineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        log("WARN", f"Ignoring unknown keys in {path}: {', '.join(unknown)}")
    values = {key: value for key, value in data.items() if key in known}
    values["machine_name"] = name
    # The store may have moved since the machine was created.
    values["store_path"] = Path(store_path)
    try:
        return validate_config(MachineConfig(**values))
    except TypeError as exc:
        raise ManagerError(f"Invalid machine config {path}: {exc}")


def list_machines(store_path: Path):
    root = Path(store_path) / MACHINES_DIRNAME
    if not root.is_dir():
        return []
    return sorted(p.name for p in root.iterdir() if (p / MACHINE_CONFIG_NAME).is_file())
