"""Global constants, defaults and output patterns for the VirtualBox driver."""

from __future__ import annotations

import os
import re
from pathlib import Path

DRIVER_NAME = "virtualbox"

# STORAGE_PATH holds the boot image cache and one directory per machine.
_STORAGE_PATH = os.environ.get("VBOXDRIVER_STORAGE_PATH")
if _STORAGE_PATH:
    DEFAULT_STORAGE_PATH = Path(_STORAGE_PATH).expanduser()
else:
    DEFAULT_STORAGE_PATH = Path.home() / ".vboxdriver"
MACHINES_DIRNAME = "machines"
CACHE_DIRNAME = "cache"
MACHINE_CONFIG_NAME = "config.yaml"

DEFAULT_CPU = 1
DEFAULT_MEMORY = 1024
DEFAULT_DISK_SIZE = 20000
DEFAULT_BOOT2DOCKER_URL = ""
DEFAULT_BOOT2DOCKER_IMPORT_VM = ""
DEFAULT_HOSTONLY_CIDR = "192.168.99.1/24"
DEFAULT_HOSTONLY_NICTYPE = "82540EM"
DEFAULT_HOSTONLY_PROMISC = "deny"
DEFAULT_SSH_USER = "docker"
DEFAULT_SSH_PORT = 0
MAX_CPUS = 32
DOCKER_PORT = 2376
GUEST_SSH_PORT = 22

ISO_FILENAME = "boot2docker.iso"
DISK_FILENAME = "disk.vmdk"
SSH_KEY_FILENAME = "id_rsa"
IMPORT_SSH_KEY = Path(".ssh") / "id_boot2docker"
B2D_RELEASES_API = "https://api.github.com/repos/boot2docker/boot2docker/releases/latest"
B2D_ISO_URL = "https://github.com/boot2docker/boot2docker/releases/download/{tag}/boot2docker.iso"
B2D_FORMAT_MAGIC = "boot2docker, please format-me"

TRUTHY = {"1", "true", "yes", "on"}
_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

# Host-only networking
DHCP_PREFIX = "HostInterfaceNetworking-"
# Some VirtualBox releases report this netmask for a freshly created adapter.
BUGGY_NETMASK = "15.0.0.0"
DHCP_LOWER_OCTET = 100
DHCP_UPPER_OCTET = 254
DHCP_RANDOM_RANGE = 25
DHCP_RANDOM_ATTEMPTS = 5
HOSTONLY_WAIT_ATTEMPTS = 10
HOSTONLY_WAIT_INTERVAL = 1.0
HOSTONLY_REPAIR_DELAY = 5.0

# Port forwarding
LOOPBACK_ADDRESS = "127.0.0.1"
PORT_ALLOCATION_ATTEMPTS = 10
SSH_FORWARD_NAME = "ssh"
NAT_INTERFACE = 1

# Lifecycle polling
STATE_POLL_INTERVAL = 1.0
REMOVE_LOCK_DELAY = 1.0
SSH_WAIT_ATTEMPTS = 60
SSH_WAIT_INTERVAL = 3.0
IP_WAIT_ATTEMPTS = 5
IP_WAIT_INTERVAL = 4.0

# Hypervisor log markers meaning hardware virtualization was refused.
VTX_LOG_MARKERS = (
    "VT-x is disabled",
    "the host CPU does NOT support HW virtualization",
    "VERR_VMX_UNABLE_TO_START_VM",
)

# Machine-readable output grammar, one pattern per field.
RE_VM_STATE = re.compile(r'^VMState="(\w+)"', re.MULTILINE)
RE_EQUAL_LINE = re.compile(r'^"?(?P<key>[^"=]+)"?="?(?P<value>.*?)"?$')
RE_COLON_LINE = re.compile(r"^(?P<key>[^:]+):\s+(?P<value>.*)$")
RE_MACHINE_NOT_FOUND = re.compile(r"Could not find a registered machine named '(.+)'")
RE_HOSTONLY_CREATED = re.compile(r"Interface '(.+)' was successfully created")
RE_VERSION = re.compile(r"^(\d+)\.(\d+)")
RE_INET = re.compile(r"^inet\s+(\d{1,3}(?:\.\d{1,3}){3})/\d+")

SHARE_DEFAULTS = {
    "Linux": ("hosthome", "/home"),
    "Darwin": ("Users", "/Users"),
    "Windows": ("c/Users", "C:\\Users"),
}
