"""Data models for the VirtualBox driver."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from ipaddress import IPv4Address
from pathlib import Path
from typing import NamedTuple, Optional

from vboxdriver.constants import (
    DEFAULT_BOOT2DOCKER_IMPORT_VM,
    DEFAULT_BOOT2DOCKER_URL,
    DEFAULT_CPU,
    DEFAULT_DISK_SIZE,
    DEFAULT_HOSTONLY_CIDR,
    DEFAULT_HOSTONLY_NICTYPE,
    DEFAULT_HOSTONLY_PROMISC,
    DEFAULT_MEMORY,
    DEFAULT_SSH_PORT,
    DEFAULT_SSH_USER,
    DEFAULT_STORAGE_PATH,
)


class VMState(Enum):
    NONE = ""
    STARTING = "Starting"
    RUNNING = "Running"
    PAUSED = "Paused"
    SAVED = "Saved"
    STOPPED = "Stopped"
    ERROR = "Error"

    def __str__(self) -> str:
        return self.value


class PortForward(NamedTuple):
    name: str
    protocol: str
    host_ip: str
    host_port: int
    guest_port: int

    def to_rule(self) -> str:
        # name,protocol,host ip,host port,guest ip,guest port
        return f"{self.name},{self.protocol},{self.host_ip},{self.host_port},,{self.guest_port}"


@dataclass
class MachineConfig:
    machine_name: str
    store_path: Path = DEFAULT_STORAGE_PATH
    cpu: int = DEFAULT_CPU
    memory: int = DEFAULT_MEMORY
    disk_size: int = DEFAULT_DISK_SIZE
    boot2docker_url: str = DEFAULT_BOOT2DOCKER_URL
    boot2docker_import_vm: str = DEFAULT_BOOT2DOCKER_IMPORT_VM
    host_dns_resolver: bool = False
    hostonly_cidr: str = DEFAULT_HOSTONLY_CIDR
    hostonly_nictype: str = DEFAULT_HOSTONLY_NICTYPE
    hostonly_promisc: str = DEFAULT_HOSTONLY_PROMISC
    no_share: bool = False
    dns_proxy: bool = False
    no_vtx_check: bool = False
    ssh_user: str = DEFAULT_SSH_USER
    ssh_port: int = DEFAULT_SSH_PORT
    ip_address: str = ""

    def __post_init__(self):
        self.store_path = Path(self.store_path)


@dataclass
class HostOnlyNetwork:
    name: str = ""
    guid: str = ""
    dhcp: bool = False
    ip: Optional[IPv4Address] = None
    netmask: Optional[IPv4Address] = None
    hw_addr: str = ""
    medium: str = ""
    status: str = ""
    network_name: str = ""


@dataclass
class DHCPServer:
    network_name: str = ""
    ip: Optional[IPv4Address] = None
    netmask: Optional[IPv4Address] = None
    lower_ip: Optional[IPv4Address] = None
    upper_ip: Optional[IPv4Address] = None
    enabled: bool = False


@dataclass
class VMInfo:
    cpus: int = 0
    memory: int = 0


@dataclass
class VirtualDisk:
    uuid: str = ""
    path: str = ""
