"""Host-only network and DHCP server provisioning for the VirtualBox driver."""

from __future__ import annotations

from ipaddress import IPv4Address, IPv4Interface, IPv4Network, ip_interface
from typing import Dict, Optional, Tuple

from vboxdriver.constants import (
    BUGGY_NETMASK,
    DHCP_LOWER_OCTET,
    DHCP_PREFIX,
    DHCP_RANDOM_ATTEMPTS,
    DHCP_RANDOM_RANGE,
    DHCP_UPPER_OCTET,
    HOSTONLY_WAIT_ATTEMPTS,
    HOSTONLY_WAIT_INTERVAL,
)
from vboxdriver.exceptions import (
    CLIExecutionError,
    HostOnlyNetworkError,
    InvalidCIDRError,
    NetworkAddressAsHostError,
    RandomAddressExhaustedError,
)
from vboxdriver.models import DHCPServer, HostOnlyNetwork
from vboxdriver.parsers import parse_created_adapter, parse_dhcp_servers, parse_hostonly_ifs
from vboxdriver.utils import log


def parse_and_validate_cidr(cidr: str) -> Tuple[IPv4Address, IPv4Network]:
    """Split ``cidr`` into the host IP and its network.

    The host part must not be the network address itself: ``192.168.99.0/24``
    is rejected, ``192.168.99.1/24`` is accepted.
    """
    try:
        iface = ip_interface(cidr.strip())
    except ValueError as exc:
        raise InvalidCIDRError(f"Invalid host-only CIDR '{cidr}': {exc}")
    if not isinstance(iface, IPv4Interface):
        raise InvalidCIDRError(f"Invalid host-only CIDR '{cidr}': only IPv4 is supported")
    if iface.ip == iface.network.network_address:
        raise NetworkAddressAsHostError(cidr)
    return iface.ip, iface.network


def dhcp_pool_bounds(network: IPv4Network) -> Tuple[IPv4Address, IPv4Address]:
    base = int(network.network_address) & 0xFFFFFF00
    return IPv4Address(base + DHCP_LOWER_OCTET), IPv4Address(base + DHCP_UPPER_OCTET)


def random_ip_in_subnet(base_ip: IPv4Address, random_source) -> IPv4Address:
    """Pick a pseudo-random address in the low range of ``base_ip``'s /24 that is not the host."""
    host_octet = int(base_ip) & 0xFF
    prefix = int(base_ip) & 0xFFFFFF00
    for _ in range(DHCP_RANDOM_ATTEMPTS):
        candidate = random_source.random_int(DHCP_RANDOM_RANGE)
        if candidate != host_octet:
            return IPv4Address(prefix + candidate)
    raise RandomAddressExhaustedError()


def build_dhcp_server(network: IPv4Network, server_ip: IPv4Address) -> DHCPServer:
    lower, upper = dhcp_pool_bounds(network)
    return DHCPServer(
        ip=server_ip,
        netmask=network.netmask,
        lower_ip=lower,
        upper_ip=upper,
        enabled=True,
    )


class HostOnlyNetworkManager:
    """Reconciles host-only adapters and their DHCP servers.

    Adapters and DHCP servers are host-wide and can be changed by other
    machines or by hand, so every lookup re-queries VBoxManage.
    """

    def __init__(self, vbox, sleeper) -> None:
        self.vbox = vbox
        self.sleeper = sleeper

    def list_adapters(self) -> Dict[str, HostOnlyNetwork]:
        return parse_hostonly_ifs(self.vbox.vbm_out("list", "hostonlyifs"))

    @staticmethod
    def find(
        adapters: Dict[str, HostOnlyNetwork], ip: IPv4Address, netmask: IPv4Address
    ) -> Optional[HostOnlyNetwork]:
        for adapter in adapters.values():
            if adapter.ip != ip:
                continue
            # The buggy mask shows up on a freshly created adapter in some releases.
            if adapter.netmask == netmask or adapter.netmask == IPv4Address(BUGGY_NETMASK):
                log("DEBUG", f"Found host-only adapter: {adapter.name}")
                return adapter
        log("DEBUG", "No matching host-only adapter found")
        return None

    def find_or_create(self, ip: IPv4Address, netmask: IPv4Address) -> HostOnlyNetwork:
        adapter = self.find(self.list_adapters(), ip, netmask)
        if adapter is not None:
            return adapter

        created = self.create_adapter()
        created.ip = ip
        created.netmask = netmask
        self.save_ipv4(created)

        # A new adapter can take a moment to show up in the listing.
        for _ in range(HOSTONLY_WAIT_ATTEMPTS):
            self.sleeper.sleep(HOSTONLY_WAIT_INTERVAL)
            adapter = self.find(self.list_adapters(), ip, netmask)
            if adapter is not None:
                return adapter
        raise HostOnlyNetworkError(
            "The host-only adapter we just created is not visible. This is a well known VirtualBox "
            "bug. You might want to uninstall it and reinstall at least version 5.0.12 that is "
            "supposed to fix this issue"
        )

    def create_adapter(self) -> HostOnlyNetwork:
        out = self.vbox.vbm_out("hostonlyif", "create")
        name = parse_created_adapter(out)
        if name is None:
            raise HostOnlyNetworkError("Failed to create host-only adapter")
        log("INFO", f"Created host-only adapter {name}")
        return HostOnlyNetwork(name=name)

    def save_ipv4(self, adapter: HostOnlyNetwork) -> None:
        if adapter.ip is None or adapter.netmask is None:
            return
        self.vbox.vbm(
            "hostonlyif",
            "ipconfig",
            adapter.name,
            "--ip",
            str(adapter.ip),
            "--netmask",
            str(adapter.netmask),
        )

    def repair(self, adapter: HostOnlyNetwork) -> None:
        log("DEBUG", f"Rewriting IPv4 configuration of {adapter.name} to {adapter.ip}/{adapter.netmask}")
        self.save_ipv4(adapter)

    def list_dhcp_servers(self) -> Dict[str, DHCPServer]:
        return parse_dhcp_servers(self.vbox.vbm_out("list", "dhcpservers"))

    def remove_orphan_dhcp_servers(self) -> None:
        """Remove host-only DHCP servers whose adapter no longer exists."""
        servers = self.list_dhcp_servers()
        if not servers:
            return
        adapters = self.list_adapters()
        for name in servers:
            if not name.startswith(DHCP_PREFIX) or name in adapters:
                continue
            log("DEBUG", f"Removing orphan DHCP server {name}")
            try:
                self.vbox.vbm("dhcpserver", "remove", "--netname", name)
            except CLIExecutionError as exc:
                log("WARN", f"Unable to remove orphan dhcp server '{name}': {exc}")

    def add_or_modify_dhcp_server(self, adapter_name: str, dhcp: DHCPServer) -> None:
        name = DHCP_PREFIX + adapter_name
        command = "add"
        existing = self.list_dhcp_servers().get(name)
        if existing is not None:
            # Some hosts (macOS) get a default server when the adapter is created.
            command = "modify"
            if (
                existing.enabled
                and existing.ip == dhcp.ip
                and existing.netmask == dhcp.netmask
                and existing.lower_ip == dhcp.lower_ip
                and existing.upper_ip == dhcp.upper_ip
            ):
                log("DEBUG", f"DHCP server {name} is up to date")
                return

        self.vbox.vbm(
            "dhcpserver",
            command,
            "--netname",
            name,
            "--ip",
            str(dhcp.ip),
            "--netmask",
            str(dhcp.netmask),
            "--lowerip",
            str(dhcp.lower_ip),
            "--upperip",
            str(dhcp.upper_ip),
            "--enable" if dhcp.enabled else "--disable",
        )
