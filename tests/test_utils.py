"""Tests for vboxdriver.utils module."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from vboxdriver.exceptions import ManagerError, WaitTimeoutError
from vboxdriver.utils import (
    check_deadline,
    copy_file,
    download_file,
    get_env,
    get_env_bool,
    log,
    make_deadline,
    parse_int_env,
    set_verbose,
    wait_for,
)


class TestLog:
    def test_info_level(self, capsys):
        log("INFO", "test message")
        captured = capsys.readouterr()
        assert "[INFO]" in captured.out
        assert "test message" in captured.out

    def test_debug_suppressed_by_default(self, capsys):
        log("DEBUG", "should not appear")
        captured = capsys.readouterr()
        assert captured.out == ""

    def test_debug_when_verbose(self, capsys):
        set_verbose(True)
        log("DEBUG", "now visible")
        assert "now visible" in capsys.readouterr().out


class TestGetEnv:
    def test_returns_value(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "hello")
        assert get_env("TEST_VAR") == "hello"

    def test_returns_default(self, monkeypatch):
        monkeypatch.delenv("TEST_VAR", raising=False)
        assert get_env("TEST_VAR", "fallback") == "fallback"


class TestGetEnvBool:
    @pytest.mark.parametrize("value", ["1", "true", "yes", "on", "TRUE", "Yes"])
    def test_truthy_values(self, monkeypatch, value):
        monkeypatch.setenv("TEST_BOOL", value)
        assert get_env_bool("TEST_BOOL") is True

    @pytest.mark.parametrize("value", ["0", "false", "no", "off", "random"])
    def test_falsy_values(self, monkeypatch, value):
        monkeypatch.setenv("TEST_BOOL", value)
        assert get_env_bool("TEST_BOOL") is False

    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("TEST_BOOL", raising=False)
        assert get_env_bool("TEST_BOOL", True) is True


class TestParseIntEnv:
    def test_valid_value(self, monkeypatch):
        monkeypatch.setenv("MY_INT", "42")
        assert parse_int_env("MY_INT", "10") == 42

    def test_non_integer_raises(self, monkeypatch):
        monkeypatch.setenv("MY_INT", "abc")
        with pytest.raises(ManagerError, match="must be an integer"):
            parse_int_env("MY_INT", "10")

    def test_below_min_raises(self, monkeypatch):
        monkeypatch.setenv("MY_INT", "-2")
        with pytest.raises(ManagerError, match="must be >= -1"):
            parse_int_env("MY_INT", "10", min_val=-1)


class TestWaitFor:
    def test_succeeds_after_retries(self):
        sleeps = []
        results = iter([False, False, True])
        assert wait_for(lambda: next(results), 5, 2.0, sleeps.append) is True
        assert sleeps == [2.0, 2.0]

    def test_gives_up(self):
        sleeps = []
        assert wait_for(lambda: False, 3, 1.0, sleeps.append) is False
        assert sleeps == [1.0, 1.0]

    def test_deadline_passed(self):
        with pytest.raises(WaitTimeoutError):
            wait_for(lambda: False, 3, 1.0, lambda _s: None, deadline=make_deadline(0))

    def test_no_deadline(self):
        assert make_deadline(None) is None
        check_deadline(None)


class TestCopyFile:
    def test_copies(self, tmp_path):
        src = tmp_path / "a.iso"
        src.write_bytes(b"data")
        dst = tmp_path / "deep" / "b.iso"
        copy_file(src, dst)
        assert dst.read_bytes() == b"data"

    def test_missing_source(self, tmp_path):
        with pytest.raises(ManagerError, match="not a regular file"):
            copy_file(tmp_path / "missing", tmp_path / "out")


class TestDownloadFile:
    @patch("vboxdriver.utils.requests.get")
    def test_streams_to_destination(self, mock_get, tmp_path):
        response = MagicMock()
        response.iter_content.return_value = [b"abc", b"", b"def"]
        mock_get.return_value = response
        destination = tmp_path / "cache" / "boot2docker.iso"
        download_file("https://example.com/b2d.iso", destination)
        assert destination.read_bytes() == b"abcdef"
        assert list(destination.parent.iterdir()) == [destination]

    @patch("vboxdriver.utils.requests.get", side_effect=requests.ConnectionError("offline"))
    def test_connection_error(self, _mock_get, tmp_path):
        with pytest.raises(ManagerError, match="Failed to download"):
            download_file("https://example.com/b2d.iso", tmp_path / "b2d.iso")

    @patch("vboxdriver.utils.requests.get")
    def test_interrupted_download_cleans_up(self, mock_get, tmp_path):
        response = MagicMock()
        response.iter_content.side_effect = requests.ConnectionError("reset")
        mock_get.return_value = response
        with pytest.raises(ManagerError, match="interrupted"):
            download_file("https://example.com/b2d.iso", tmp_path / "b2d.iso")
        assert list(tmp_path.iterdir()) == []
