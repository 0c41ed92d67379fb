"""Shared test fixtures: an in-memory VBoxManage and deterministic collaborators."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest

from vboxdriver.driver import Driver
from vboxdriver.exceptions import CLIExecutionError
from vboxdriver.models import MachineConfig


def _option(args: Tuple[str, ...], name: str) -> Optional[str]:
    if name in args:
        return args[args.index(name) + 1]
    return None


class FakeVBoxManager:
    """Answers VBoxManage commands from in-memory tables and records every call.

    ``vms`` maps machine name to its raw VMState token, ``adapters`` maps
    host-only adapter name to ``{"ip", "netmask"}`` and ``dhcp`` maps DHCP
    network name to its settings. ``corrupt_on_start`` wipes every adapter
    address on that many ``startvm`` calls, the way VirtualBox sometimes does.
    """

    command = "VBoxManage"

    def __init__(self) -> None:
        self.calls: List[Tuple[str, ...]] = []
        self.vms: Dict[str, str] = {}
        self.vm_info: Dict[str, Dict[str, str]] = {}
        self.adapters: Dict[str, Dict[str, Optional[str]]] = {}
        self.dhcp: Dict[str, Dict[str, object]] = {}
        self.natpf: Dict[str, Dict[str, str]] = {}
        self.failures: Dict[str, str] = {}
        self.version = "6.1.50r161033"
        self.corrupt_on_start = 0

    # Executor interface
    def vbm(self, *args: str) -> None:
        self.vbm_out_err(*args)

    def vbm_out(self, *args: str) -> str:
        return self.vbm_out_err(*args)[0]

    def vbm_out_err(self, *args: str) -> Tuple[str, str]:
        self.calls.append(args)
        verb = args[0]
        if verb in self.failures:
            self._fail(args, self.failures[verb])
        handler = getattr(self, "_" + verb.lstrip("-").replace("-", "_"), None)
        if handler is None:
            return "", ""
        return handler(args), ""

    def _fail(self, args, stderr: str):
        raise CLIExecutionError(self.command, args, stderr=stderr, returncode=1)

    def calls_for(self, verb: str) -> List[Tuple[str, ...]]:
        return [call for call in self.calls if call[0] == verb]

    # Commands
    def _version(self, args) -> str:
        return self.version + "\n"

    def _showvminfo(self, args) -> str:
        name = args[1]
        if name not in self.vms:
            self._fail(
                args,
                f"VBoxManage: error: Could not find a registered machine named '{name}'\n"
                "VBoxManage: error: Details: code VBOX_E_OBJECT_NOT_FOUND (0x80bb0001)",
            )
        lines = [f'name="{name}"', f'VMState="{self.vms[name]}"']
        for key, value in self.vm_info.get(name, {}).items():
            lines.append(f'"{key}"="{value}"')
        return "\n".join(lines) + "\n"

    def _createvm(self, args) -> str:
        name = _option(args, "--name")
        self.vms[name] = "poweroff"
        return f"Virtual machine '{name}' is created and registered.\n"

    def _startvm(self, args) -> str:
        self.vms[args[1]] = "running"
        if self.corrupt_on_start > 0:
            self.corrupt_on_start -= 1
            for adapter in self.adapters.values():
                adapter["ip"] = None
        return f'VM "{args[1]}" has been successfully started.\n'

    def _controlvm(self, args) -> str:
        name, action = args[1], args[2]
        if name not in self.vms:
            self._fail(args, f"VBoxManage: error: Could not find a registered machine named '{name}'")
        if action in ("acpipowerbutton", "poweroff"):
            self.vms[name] = "poweroff"
        elif action == "resume":
            self.vms[name] = "running"
        return ""

    def _unregistervm(self, args) -> str:
        self.vms.pop(args[-1], None)
        return ""

    def _modifyvm(self, args) -> str:
        name = args[1]
        for option in ("--natpf1",):
            if option not in args:
                continue
            rules = self.natpf.setdefault(name, {})
            value = _option(args, option)
            if value == "delete":
                rule = args[args.index(option) + 2]
                if rule not in rules:
                    self._fail(args, "VBoxManage: error: Code NS_ERROR_INVALID_ARG")
                del rules[rule]
            else:
                rules[value.split(",", 1)[0]] = value
        return ""

    def _list(self, args) -> str:
        if args[1] == "hostonlyifs":
            blocks = []
            for index, (name, adapter) in enumerate(sorted(self.adapters.items())):
                blocks.append(
                    "\n".join(
                        [
                            f"Name:            {name}",
                            f"GUID:            786f6276-656e-4074-8000-0a00270000{index:02d}",
                            "DHCP:            Disabled",
                            f"IPAddress:       {adapter['ip'] or ''}",
                            f"NetworkMask:     {adapter['netmask'] or ''}",
                            "IPV6Address:     fe80::800:27ff:fe00:0",
                            "IPV6NetworkMaskPrefixLength: 64",
                            f"HardwareAddress: 0a:00:27:00:00:{index:02d}",
                            "MediumType:      Ethernet",
                            "Wireless:        No",
                            "Status:          Up",
                            f"VBoxNetworkName: HostInterfaceNetworking-{name}",
                        ]
                    )
                )
            return "\n\n".join(blocks) + "\n"
        if args[1] == "dhcpservers":
            blocks = []
            for name, server in sorted(self.dhcp.items()):
                blocks.append(
                    "\n".join(
                        [
                            f"NetworkName:    {name}",
                            f"IP:             {server['ip']}",
                            f"NetworkMask:    {server['netmask']}",
                            f"lowerIPAddress: {server['lower']}",
                            f"upperIPAddress: {server['upper']}",
                            f"Enabled:        {'Yes' if server['enabled'] else 'No'}",
                        ]
                    )
                )
            return "\n\n".join(blocks) + "\n"
        return ""

    def _hostonlyif(self, args) -> str:
        if args[1] == "create":
            name = f"vboxnet{len(self.adapters)}"
            self.adapters[name] = {"ip": None, "netmask": None}
            return (
                "0%...10%...20%...30%...40%...50%...60%...70%...80%...90%...100%\n"
                f"Interface '{name}' was successfully created\n"
            )
        if args[1] == "ipconfig":
            self.adapters[args[2]] = {"ip": _option(args, "--ip"), "netmask": _option(args, "--netmask")}
        return ""

    def _dhcpserver(self, args) -> str:
        name = _option(args, "--netname")
        if args[1] == "remove":
            self.dhcp.pop(name, None)
            return ""
        self.dhcp[name] = {
            "ip": _option(args, "--ip"),
            "netmask": _option(args, "--netmask"),
            "lower": _option(args, "--lowerip"),
            "upper": _option(args, "--upperip"),
            "enabled": "--enable" in args,
        }
        return ""


class InstantSleeper:
    def __init__(self) -> None:
        self.sleeps: List[float] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


class FixedRandom:
    def __init__(self, values) -> None:
        self.values = list(values)
        self.requests: List[int] = []

    def random_int(self, n: int) -> int:
        self.requests.append(n)
        value = self.values.pop(0) if len(self.values) > 1 else self.values[0]
        return value % n


class CannedLogsReader:
    def __init__(self, lines=None, error: Optional[Exception] = None) -> None:
        self.lines = list(lines or [])
        self.error = error
        self.paths = []

    def read(self, path):
        self.paths.append(path)
        if self.error is not None:
            raise self.error
        return self.lines


class RecordingIPWaiter:
    def __init__(self, ip: str = "192.168.99.100") -> None:
        self.ip = ip
        self.calls = []

    def wait(self, driver, timeout=None) -> None:
        self.calls.append(timeout)
        driver.cfg.ip_address = self.ip


@pytest.fixture(autouse=True)
def _quiet_debug(monkeypatch):
    """Keep DEBUG output off unless a test turns it on."""
    monkeypatch.setattr("vboxdriver.utils._verbose", False)


@pytest.fixture
def fake_vbox() -> FakeVBoxManager:
    return FakeVBoxManager()


@pytest.fixture
def sleeper() -> InstantSleeper:
    return InstantSleeper()


@pytest.fixture
def machine_config(tmp_path) -> MachineConfig:
    return MachineConfig(machine_name="default", store_path=tmp_path / "store")


@pytest.fixture
def make_driver(machine_config, fake_vbox, sleeper):
    """Build a Driver wired to fakes; keyword arguments replace individual collaborators."""

    def _make(**overrides) -> Driver:
        kwargs = dict(
            vbox=fake_vbox,
            b2d_updater=MagicMock(),
            ssh_key_generator=MagicMock(),
            disk_creator=MagicMock(),
            logs_reader=CannedLogsReader(),
            ip_waiter=RecordingIPWaiter(),
            random_source=FixedRandom([5]),
            sleeper=sleeper,
        )
        kwargs.update(overrides)
        return Driver(machine_config, **kwargs)

    return _make
