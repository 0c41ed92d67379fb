"""Custom exceptions for the VirtualBox machine driver."""

from __future__ import annotations

from typing import Optional, Sequence


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class CLIExecutionError(ManagerError):
    """A VBoxManage invocation exited non-zero or reported an error."""

    def __init__(
        self,
        command: str,
        args: Sequence[str],
        stdout: str = "",
        stderr: str = "",
        returncode: int = 1,
        message: Optional[str] = None,
    ) -> None:
        self.command = command
        self.command_args = list(args)
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        if message is None:
            message = f"{command} {' '.join(self.command_args)} failed:\n{stderr.strip()}"
        super().__init__(message)


class VBoxManageNotFoundError(CLIExecutionError):
    def __init__(self, command: str, args: Sequence[str] = ()) -> None:
        super().__init__(
            command,
            args,
            message="VBoxManage not found. Make sure VirtualBox is installed and VBoxManage is in the path",
        )


class UnsupportedVersionError(ManagerError):
    """The installed VirtualBox is too old (or its version is unreadable)."""


class VTXRequiredError(ManagerError):
    def __init__(self) -> None:
        super().__init__(
            "This computer doesn't have VT-X/AMD-v enabled. Enabling it in the BIOS is mandatory"
        )


class HyperVCoexistenceError(ManagerError):
    def __init__(self) -> None:
        super().__init__(
            "This computer has Hyper-V installed. VirtualBox refuses to boot a 64bits VM when "
            "Hyper-V is installed. See https://www.virtualbox.org/ticket/12350"
        )


class InvalidNetworkConfigError(ManagerError):
    """Host-only network configuration cannot be used."""


class InvalidCIDRError(InvalidNetworkConfigError):
    pass


class NetworkAddressAsHostError(InvalidNetworkConfigError):
    def __init__(self, cidr: str) -> None:
        super().__init__(
            f"host-only cidr must be specified with a host address, not a network address (got '{cidr}')"
        )


class RandomAddressExhaustedError(ManagerError):
    def __init__(self) -> None:
        super().__init__("unable to generate random IP")


class HostOnlyNetworkError(ManagerError):
    """A host-only adapter could not be created, found or repaired."""


class PortAllocationError(ManagerError):
    pass


class MachineNotFoundError(ManagerError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"machine '{name}' does not exist")


class HostNotRunningError(ManagerError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Host '{name}' is not running")


class NoIPAddressFoundError(ManagerError):
    pass


class SSHCommandError(ManagerError):
    def __init__(self, command: str, returncode: int, output: str) -> None:
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"ssh command '{command}' exited with status {returncode}: {output.strip()}")


class WaitTimeoutError(ManagerError):
    """A caller-supplied deadline expired while polling."""
