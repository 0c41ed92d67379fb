"""Tests for vboxdriver.portforward module."""

from __future__ import annotations

import platform
import socket
from unittest.mock import MagicMock, patch

import pytest

from vboxdriver.exceptions import PortAllocationError
from vboxdriver.models import PortForward
from vboxdriver.portforward import get_available_tcp_port, set_port_forwarding


class TestGetAvailableTCPPort:
    def test_zero_never_returned(self):
        for _ in range(5):
            assert get_available_tcp_port(0) != 0

    def test_bound_port_falls_back(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
            holder.bind(("127.0.0.1", 0))
            holder.listen(1)
            taken = holder.getsockname()[1]
            port = get_available_tcp_port(taken)
        assert port not in (0, taken)

    def test_free_port_is_kept(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            probe.bind(("127.0.0.1", 0))
            free = probe.getsockname()[1]
        assert get_available_tcp_port(free) == free

    @pytest.mark.skipif(platform.system() == "Windows", reason="SO_REUSEADDR semantics differ on Windows")
    def test_port_in_time_wait_is_kept(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
            listener.bind(("127.0.0.1", 0))
            listener.listen(1)
            previous = listener.getsockname()[1]
            with socket.create_connection(("127.0.0.1", previous)) as client:
                served, _ = listener.accept()
                # Closing the served side first leaves the port in TIME_WAIT.
                served.close()
                client.recv(1)
        assert get_available_tcp_port(previous) == previous

    def test_out_of_range_hint_falls_back(self):
        port = get_available_tcp_port(70000)
        assert 0 < port <= 65535

    def test_gives_up_after_ten_attempts(self):
        failing = MagicMock()
        failing.__enter__.return_value.bind.side_effect = OSError("in use")
        with patch("vboxdriver.portforward.socket.socket", return_value=failing) as mock_socket:
            with pytest.raises(PortAllocationError):
                get_available_tcp_port(2222)
        assert mock_socket.call_count == 10


class TestSetPortForwarding:
    def test_replaces_rule(self, fake_vbox):
        fake_vbox.natpf["default"] = {"ssh": "ssh,tcp,127.0.0.1,1111,,22"}
        with patch("vboxdriver.portforward.get_available_tcp_port", return_value=50022):
            port = set_port_forwarding(fake_vbox, "default", 1, "ssh", "tcp", 22, 0)
        assert port == 50022
        assert fake_vbox.calls == [
            ("modifyvm", "default", "--natpf1", "delete", "ssh"),
            ("modifyvm", "default", "--natpf1", "ssh,tcp,127.0.0.1,50022,,22"),
        ]
        assert fake_vbox.natpf["default"] == {"ssh": "ssh,tcp,127.0.0.1,50022,,22"}

    def test_missing_rule_is_tolerated(self, fake_vbox):
        with patch("vboxdriver.portforward.get_available_tcp_port", return_value=40000):
            assert set_port_forwarding(fake_vbox, "default", 1, "ssh", "tcp", 22, 40000) == 40000
        assert fake_vbox.natpf["default"]["ssh"].startswith("ssh,tcp,127.0.0.1,40000")

    def test_rule_binds_loopback_only(self):
        rule = PortForward("ssh", "tcp", "127.0.0.1", 2222, 22).to_rule()
        assert rule == "ssh,tcp,127.0.0.1,2222,,22"
