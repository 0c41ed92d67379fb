"""Host detection for the VirtualBox driver."""

from __future__ import annotations

import platform
import subprocess
from dataclasses import dataclass
from typing import Optional, Tuple

from vboxdriver.constants import SHARE_DEFAULTS
from vboxdriver.utils import log


@dataclass
class HostInfo:
    system: str  # "Linux", "Darwin", "Windows", ...
    vtx_disabled: bool
    hyperv_installed: bool


def _cpu_flags_linux() -> str:
    try:
        with open("/proc/cpuinfo") as f:
            for line in f:
                if line.startswith("flags"):
                    return line.split(":", 1)[1]
        return ""
    except OSError:
        return ""


def _cpu_features_darwin() -> str:
    try:
        result = subprocess.run(
            ["sysctl", "-n", "machdep.cpu.features"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return ""
    return result.stdout


def is_vtx_disabled(system: Optional[str] = None) -> bool:
    """Return True only when the host clearly lacks hardware virtualization."""
    system = system or platform.system()
    if system == "Linux":
        flags = _cpu_flags_linux().split()
        if not flags:
            # Unreadable cpuinfo: let VirtualBox decide.
            return False
        return "vmx" not in flags and "svm" not in flags
    if system == "Darwin":
        features = _cpu_features_darwin()
        if not features:
            return False
        return "VMX" not in features.upper().split()
    return False


def is_hyperv_installed(system: Optional[str] = None) -> bool:
    system = system or platform.system()
    if system != "Windows":
        return False
    try:
        result = subprocess.run(
            ["wmic", "computersystem", "get", "hypervisorpresent"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return False
    return "TRUE" in result.stdout.upper()


def get_share_drive_and_name(system: Optional[str] = None) -> Tuple[str, str]:
    """Return (share name, host directory) of the default shared folder, or ("", "")."""
    return SHARE_DEFAULTS.get(system or platform.system(), ("", ""))


def detect_host() -> HostInfo:
    system = platform.system()
    vtx_disabled = is_vtx_disabled(system)
    hyperv = is_hyperv_installed(system)
    if vtx_disabled:
        log("DEBUG", "Host CPU does not advertise VT-x/AMD-v")
    if hyperv:
        log("DEBUG", "Hyper-V detected on this host")
    return HostInfo(system=system, vtx_disabled=vtx_disabled, hyperv_installed=hyperv)
