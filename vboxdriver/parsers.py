"""Parsers for VBoxManage output and VirtualBox log files.

All text scraping of the hypervisor lives here. Each field is read with a
pattern from ``vboxdriver.constants``:

* ``RE_EQUAL_LINE``: ``key="value"`` lines from ``showvminfo --machinereadable``
  (keys and values may or may not be quoted).
* ``RE_COLON_LINE``: ``Key:   value`` lines from ``list hostonlyifs`` and
  ``list dhcpservers``; records are separated by their first/last key.
* ``RE_VM_STATE``: the ``VMState="..."`` line.
"""

from __future__ import annotations

from ipaddress import IPv4Address
from typing import Dict, Iterable, Iterator, Optional, Pattern, Tuple

from vboxdriver.constants import (
    RE_COLON_LINE,
    RE_EQUAL_LINE,
    RE_HOSTONLY_CREATED,
    RE_INET,
    RE_MACHINE_NOT_FOUND,
    RE_VERSION,
    RE_VM_STATE,
    VTX_LOG_MARKERS,
)
from vboxdriver.exceptions import HostOnlyNetworkError, ManagerError
from vboxdriver.models import DHCPServer, HostOnlyNetwork, VirtualDisk, VMInfo, VMState

_STATE_MAP = {
    "running": VMState.RUNNING,
    "paused": VMState.PAUSED,
    "saved": VMState.SAVED,
    "poweroff": VMState.STOPPED,
    "aborted": VMState.STOPPED,
}


def parse_key_values(text: str, pattern: Pattern[str]) -> Iterator[Tuple[str, str]]:
    """Yield (key, value) for each line of ``text`` matching ``pattern``."""
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        match = pattern.match(line)
        if match is None:
            continue
        yield match.group("key").strip(), match.group("value").strip()


def parse_ipv4(value: str) -> Optional[IPv4Address]:
    try:
        return IPv4Address(value.strip())
    except ValueError:
        return None


def parse_ipv4_mask(value: str) -> Optional[IPv4Address]:
    """Parse a netmask written in dotted form (e.g. 255.255.255.0)."""
    return parse_ipv4(value)


def parse_vm_state(text: str) -> VMState:
    match = RE_VM_STATE.search(text)
    if match is None:
        return VMState.NONE
    return _STATE_MAP.get(match.group(1), VMState.NONE)


def machine_not_found(stderr: str) -> bool:
    return RE_MACHINE_NOT_FOUND.search(stderr) is not None


def vtx_disabled_in_log(lines: Iterable[str]) -> bool:
    for line in lines:
        for marker in VTX_LOG_MARKERS:
            if marker in line:
                return True
    return False


def parse_vm_info(text: str) -> VMInfo:
    info = VMInfo()
    for key, value in parse_key_values(text, RE_EQUAL_LINE):
        try:
            if key == "cpus":
                info.cpus = int(value)
            elif key == "memory":
                info.memory = int(value)
        except ValueError:
            raise ManagerError(f"Invalid {key} value in VM info: '{value}'")
    return info


def parse_disk_info(text: str) -> VirtualDisk:
    disk = VirtualDisk()
    for key, value in parse_key_values(text, RE_EQUAL_LINE):
        if key == "SATA-1-0":
            disk.path = value
        elif key == "SATA-ImageUUID-1-0":
            disk.uuid = value
    return disk


def parse_hostonly_ifs(text: str) -> Dict[str, HostOnlyNetwork]:
    """Parse ``list hostonlyifs`` into adapters keyed by VBoxNetworkName."""
    by_name: Dict[str, HostOnlyNetwork] = {}
    by_ip: Dict[IPv4Address, HostOnlyNetwork] = {}
    current = HostOnlyNetwork()

    for key, value in parse_key_values(text, RE_COLON_LINE):
        if key == "Name":
            current.name = value
        elif key == "GUID":
            current.guid = value
        elif key == "DHCP":
            current.dhcp = value != "Disabled"
        elif key == "IPAddress":
            current.ip = parse_ipv4(value)
        elif key == "NetworkMask":
            current.netmask = parse_ipv4_mask(value)
        elif key == "HardwareAddress":
            current.hw_addr = value.lower()
        elif key == "MediumType":
            current.medium = value
        elif key == "Status":
            current.status = value
        elif key == "VBoxNetworkName":
            current.network_name = value
            if value in by_name:
                raise HostOnlyNetworkError(
                    f"VirtualBox is configured with multiple host-only adapters with the same name "
                    f"'{value}'. Please remove one."
                )
            by_name[value] = current
            if current.ip is not None:
                if current.ip in by_ip:
                    raise HostOnlyNetworkError(
                        f"VirtualBox is configured with multiple host-only adapters with the same IP "
                        f"'{current.ip}'. Please remove one."
                    )
                by_ip[current.ip] = current
            current = HostOnlyNetwork()
    return by_name


def parse_dhcp_servers(text: str) -> Dict[str, DHCPServer]:
    """Parse ``list dhcpservers`` into servers keyed by network name."""
    servers: Dict[str, DHCPServer] = {}
    current: Optional[DHCPServer] = None

    for key, value in parse_key_values(text, RE_COLON_LINE):
        lowered = key.lower()
        if lowered == "networkname":
            current = DHCPServer(network_name=value)
            servers[value] = current
            continue
        if current is None:
            continue
        if lowered in ("ip", "dhcpd ip"):
            current.ip = parse_ipv4(value)
        elif lowered == "networkmask":
            current.netmask = parse_ipv4_mask(value)
        elif lowered == "loweripaddress":
            current.lower_ip = parse_ipv4(value)
        elif lowered == "upperipaddress":
            current.upper_ip = parse_ipv4(value)
        elif lowered == "enabled":
            current.enabled = value == "Yes"
    return servers


def parse_created_adapter(text: str) -> Optional[str]:
    match = RE_HOSTONLY_CREATED.search(text)
    return match.group(1) if match else None


def parse_guest_ip(output: str) -> Optional[str]:
    """Return the first IPv4 address from ``ip addr show`` output."""
    for line in output.splitlines():
        match = RE_INET.match(line.strip())
        if match:
            return match.group(1)
    return None


def parse_version(text: str) -> Optional[Tuple[int, int]]:
    match = RE_VERSION.match(text.strip())
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))
