"""VBoxManage command execution."""

from __future__ import annotations

import os
import platform
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Tuple

from vboxdriver.exceptions import CLIExecutionError, UnsupportedVersionError, VBoxManageNotFoundError
from vboxdriver.parsers import parse_version
from vboxdriver.utils import log


def detect_vboxmanage_cmd() -> str:
    """Locate VBoxManage, preferring the VirtualBox install dirs on Windows."""
    if platform.system() == "Windows":
        for env_name in ("VBOX_INSTALL_PATH", "VBOX_MSI_INSTALL_PATH"):
            install_dir = os.environ.get(env_name)
            if install_dir:
                candidate = Path(install_dir) / "VBoxManage.exe"
                if candidate.exists():
                    return str(candidate)
    path = shutil.which("VBoxManage")
    if path:
        return path
    return "VBoxManage"


class VBoxManager:
    """Issues commands to VBoxManage, one blocking subprocess at a time."""

    def __init__(self, command: Optional[str] = None) -> None:
        self.command = command or detect_vboxmanage_cmd()

    def vbm(self, *args: str) -> None:
        self.vbm_out_err(*args)

    def vbm_out(self, *args: str) -> str:
        stdout, _ = self.vbm_out_err(*args)
        return stdout

    def vbm_out_err(self, *args: str) -> Tuple[str, str]:
        log("DEBUG", f"COMMAND: {self.command} {' '.join(args)}")
        try:
            result = subprocess.run(
                [self.command, *args],
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            raise VBoxManageNotFoundError(self.command, args)
        log("DEBUG", f"STDOUT:\n{{\n{result.stdout}}}")
        log("DEBUG", f"STDERR:\n{{\n{result.stderr}}}")
        # VBoxManage sometimes exits 0 despite a fatal error such as VERR_VMX_NO_VMX.
        if result.returncode != 0 or "error:" in result.stderr:
            raise CLIExecutionError(
                self.command,
                args,
                stdout=result.stdout,
                stderr=result.stderr,
                returncode=result.returncode,
            )
        return result.stdout, result.stderr


def check_vboxmanage_version(version: str) -> None:
    parsed = parse_version(version)
    if parsed is None or parsed < (4, 3):
        raise UnsupportedVersionError(
            f"We support Virtualbox starting with version 5. Your VirtualBox install is '{version}'. "
            "Please upgrade at https://www.virtualbox.org"
        )
    if parsed[0] < 5:
        log(
            "WARN",
            f"You are using version {version} of VirtualBox. If you encounter issues, you might want "
            "to upgrade to version 5 at https://www.virtualbox.org",
        )
