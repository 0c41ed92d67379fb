"""Data disk creation for boot2docker machines."""

from __future__ import annotations

import io
import subprocess
import tarfile
from pathlib import Path
from typing import Optional

from vboxdriver.constants import B2D_FORMAT_MAGIC
from vboxdriver.exceptions import CLIExecutionError, ManagerError, VBoxManageNotFoundError
from vboxdriver.utils import ensure_directory, log
from vboxdriver.vbm import detect_vboxmanage_cmd

_ZERO_CHUNK = 1024 * 1024


def _add_file(archive: tarfile.TarFile, name: str, payload: bytes, mode: int = 0o644) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(payload)
    info.mode = mode
    archive.addfile(info, io.BytesIO(payload))


def build_format_tar(public_key: bytes) -> bytes:
    """Tar stream boot2docker recognizes as "format me and install these keys"."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.USTAR_FORMAT) as archive:
        # The magic file must come first.
        _add_file(archive, B2D_FORMAT_MAGIC, B2D_FORMAT_MAGIC.encode("utf-8"))
        ssh_dir = tarfile.TarInfo(".ssh")
        ssh_dir.type = tarfile.DIRTYPE
        ssh_dir.mode = 0o700
        archive.addfile(ssh_dir)
        _add_file(archive, ".ssh/authorized_keys", public_key)
        _add_file(archive, ".ssh/authorized_keys2", public_key)
    return buf.getvalue()


class DiskCreator:
    def __init__(self, command: Optional[str] = None) -> None:
        self.command = command or detect_vboxmanage_cmd()

    def create(self, size_mb: int, public_key_path: Path, disk_path: Path) -> None:
        """Write a VMDK of ``size_mb`` whose content is the format-me tar, zero-filled."""
        try:
            public_key = public_key_path.read_bytes()
        except OSError as exc:
            raise ManagerError(f"Cannot read public key {public_key_path}: {exc}")
        payload = build_format_tar(public_key)
        size_bytes = size_mb << 20
        if len(payload) > size_bytes:
            raise ManagerError(f"Disk size {size_mb} MB is too small")

        ensure_directory(disk_path.parent)
        args = ["convertfromraw", "stdin", str(disk_path), str(size_bytes), "--format", "VMDK"]
        log("DEBUG", f"COMMAND: {self.command} {' '.join(args)}")
        try:
            proc = subprocess.Popen(
                [self.command, *args],
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError:
            raise VBoxManageNotFoundError(self.command, args)

        try:
            assert proc.stdin is not None
            proc.stdin.write(payload)
            remaining = size_bytes - len(payload)
            zeros = bytes(_ZERO_CHUNK)
            while remaining > 0:
                chunk = min(remaining, _ZERO_CHUNK)
                proc.stdin.write(zeros[:chunk])
                remaining -= chunk
        except BrokenPipeError:
            log("DEBUG", "VBoxManage closed its input early")
        _, stderr = proc.communicate()
        if proc.returncode != 0:
            raise CLIExecutionError(
                self.command,
                args,
                stderr=stderr.decode(errors="replace"),
                returncode=proc.returncode,
            )
        log("DEBUG", f"Created disk image {disk_path} ({size_mb} MB)")
