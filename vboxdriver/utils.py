"""Utility functions for the VirtualBox driver."""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

try:
    import requests  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("requests is required but not installed") from exc

from vboxdriver.constants import _LOG_VERBOSE, TRUTHY
from vboxdriver.exceptions import ManagerError, WaitTimeoutError

_verbose = _LOG_VERBOSE


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def log(level: str, message: str) -> None:
    """Lightweight structured logging compatible with existing colour expectation."""
    if level == "DEBUG" and not _verbose:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


def parse_int_env(name: str, default: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = int(raw)
    except ValueError:
        raise ManagerError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ManagerError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ManagerError(f"{name} must be <= {max_val} (got {value})")
    return value


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def copy_file(source: Path, destination: Path) -> None:
    if not source.is_file():
        raise ManagerError(f"Cannot copy {source}: not a regular file")
    ensure_directory(destination.parent)
    shutil.copyfile(source, destination)
    shutil.copymode(source, destination)


def download_file(url: str, destination: Path, label: str = "Downloading", timeout: float = 60.0) -> None:
    """Stream a download to a temporary file, then move it into place."""
    log("INFO", f"{label}: {url}")
    ensure_directory(destination.parent)
    try:
        response = requests.get(url, stream=True, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise ManagerError(f"Failed to download {url}: {exc}")

    downloaded = 0
    start_time = time.time()
    with tempfile.NamedTemporaryFile(delete=False, dir=destination.parent) as tmp:
        tmp_path = Path(tmp.name)
        try:
            for chunk in response.iter_content(chunk_size=1024 * 256):
                if not chunk:
                    continue
                tmp.write(chunk)
                downloaded += len(chunk)
        except requests.RequestException as exc:
            tmp_path.unlink(missing_ok=True)
            raise ManagerError(f"Download of {url} interrupted: {exc}")
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise
    tmp_path.replace(destination)
    elapsed = time.time() - start_time
    log("SUCCESS", f"Downloaded {downloaded / (1024 * 1024):.1f} MiB in {elapsed:.1f}s")


def wait_for(
    predicate: Callable[[], bool],
    attempts: int,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
    deadline: Optional[float] = None,
) -> bool:
    """Poll ``predicate`` up to ``attempts`` times, sleeping ``interval`` between tries.

    ``deadline`` is a ``time.monotonic()`` value; once passed, WaitTimeoutError
    is raised instead of polling again.
    """
    for attempt in range(attempts):
        if predicate():
            return True
        if attempt == attempts - 1:
            break
        check_deadline(deadline)
        sleep(interval)
    return False


def make_deadline(timeout: Optional[float]) -> Optional[float]:
    if timeout is None:
        return None
    return time.monotonic() + timeout


def check_deadline(deadline: Optional[float]) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise WaitTimeoutError("Timed out waiting for the machine")
