"""Tests for vboxdriver.models module."""

from pathlib import Path

from vboxdriver.models import HostOnlyNetwork, MachineConfig, PortForward, VMState


class TestVMState:
    def test_str(self):
        assert str(VMState.RUNNING) == "Running"
        assert str(VMState.NONE) == ""


class TestPortForward:
    def test_is_named_tuple(self):
        pf = PortForward("ssh", "tcp", "127.0.0.1", 50022, 22)
        assert pf.host_port == 50022
        assert pf[4] == 22

    def test_rule_leaves_guest_ip_empty(self):
        assert PortForward("docker", "tcp", "127.0.0.1", 2376, 2376).to_rule() == "docker,tcp,127.0.0.1,2376,,2376"


class TestMachineConfig:
    def test_store_path_coerced(self):
        cfg = MachineConfig(machine_name="dev", store_path="/tmp/store")
        assert cfg.store_path == Path("/tmp/store")

    def test_defaults(self):
        cfg = MachineConfig(machine_name="dev")
        assert cfg.ssh_port == 0
        assert cfg.ip_address == ""
        assert cfg.no_share is False


class TestHostOnlyNetwork:
    def test_defaults(self):
        adapter = HostOnlyNetwork()
        assert adapter.ip is None
        assert adapter.dhcp is False
