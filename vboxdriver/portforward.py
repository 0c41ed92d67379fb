"""Host port selection and NAT port forwarding rules."""

from __future__ import annotations

import platform
import socket

from vboxdriver.constants import LOOPBACK_ADDRESS, PORT_ALLOCATION_ATTEMPTS
from vboxdriver.exceptions import CLIExecutionError, PortAllocationError
from vboxdriver.models import PortForward
from vboxdriver.utils import log


def get_available_tcp_port(port: int = 0) -> int:
    """Select an available loopback port, trying ``port`` first and then letting the OS choose."""
    for _ in range(PORT_ALLOCATION_ATTEMPTS):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            # A forward port left in TIME_WAIT by the NAT listener is still ours to reuse.
            if platform.system() != "Windows":
                probe.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                probe.bind((LOOPBACK_ADDRESS, port))
            except (OSError, OverflowError) as exc:
                log("DEBUG", f"Port {port} unavailable ({exc}); asking the OS for one")
                port = 0
                continue
            chosen = probe.getsockname()[1]
        if chosen != 0:
            return chosen
        port = 0
    raise PortAllocationError("unable to allocate tcp port")


def set_port_forwarding(
    vbox,
    machine_name: str,
    interface_num: int,
    name: str,
    protocol: str,
    guest_port: int,
    desired_host_port: int,
) -> int:
    """Replace the NAT rule ``name`` so a loopback host port reaches ``guest_port``."""
    host_port = get_available_tcp_port(desired_host_port)
    if desired_host_port not in (0, host_port):
        log(
            "DEBUG",
            f"NAT forwarding host port for guest port {guest_port} ({name}) changed from "
            f"{desired_host_port} to {host_port}",
        )
    option = f"--natpf{interface_num}"
    try:
        vbox.vbm("modifyvm", machine_name, option, "delete", name)
    except CLIExecutionError:
        log("DEBUG", f"No previous '{name}' forwarding rule to delete")
    rule = PortForward(name, protocol, LOOPBACK_ADDRESS, host_port, guest_port)
    vbox.vbm("modifyvm", machine_name, option, rule.to_rule())
    return host_port
