"""SSH key generation and guest command execution over the NAT forward."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List

from vboxdriver.exceptions import ManagerError, SSHCommandError
from vboxdriver.utils import ensure_directory, log

SSH_COMMAND_TIMEOUT = 30

BASE_SSH_OPTIONS = [
    "-F", "/dev/null",
    "-o", "ConnectionAttempts=3",
    "-o", "ConnectTimeout=10",
    "-o", "ControlMaster=no",
    "-o", "ControlPath=none",
    "-o", "LogLevel=quiet",
    "-o", "PasswordAuthentication=no",
    "-o", "ServerAliveInterval=60",
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "IdentitiesOnly=yes",
]


class SSHKeyGenerator:
    def generate(self, path: Path) -> None:
        """Create an unencrypted RSA key pair at ``path`` and ``path``.pub."""
        ensure_directory(path.parent)
        try:
            subprocess.run(
                ["ssh-keygen", "-t", "rsa", "-b", "2048", "-f", str(path), "-N", "", "-q"],
                check=True,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            raise ManagerError("ssh-keygen not found. Install an OpenSSH client to create machines.")
        except subprocess.CalledProcessError as exc:
            raise ManagerError(f"ssh-keygen failed: {exc.stderr.strip()}")
        path.chmod(0o600)


def ssh_args(driver) -> List[str]:
    return [
        "ssh",
        *BASE_SSH_OPTIONS,
        "-i", str(driver.ssh_key_path),
        "-p", str(driver.cfg.ssh_port),
        f"{driver.get_ssh_username()}@{driver.get_ssh_hostname()}",
    ]


def run_ssh_command(driver, command: str) -> str:
    cmd = ssh_args(driver) + [command]
    log("DEBUG", f"SSH: {command}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=SSH_COMMAND_TIMEOUT)
    except FileNotFoundError:
        raise ManagerError("ssh not found. Install an OpenSSH client.")
    except subprocess.TimeoutExpired:
        raise SSHCommandError(command, -1, "timed out")
    if result.returncode != 0:
        raise SSHCommandError(command, result.returncode, result.stderr or result.stdout)
    return result.stdout
