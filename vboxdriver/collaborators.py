"""Small capabilities injected into the driver so tests can replace them."""

from __future__ import annotations

import random
import time
from pathlib import Path
from typing import List, Optional

from vboxdriver.constants import IP_WAIT_ATTEMPTS, IP_WAIT_INTERVAL, SSH_WAIT_ATTEMPTS, SSH_WAIT_INTERVAL
from vboxdriver.exceptions import NoIPAddressFoundError, SSHCommandError, WaitTimeoutError
from vboxdriver.ssh import run_ssh_command
from vboxdriver.utils import log, make_deadline, wait_for


class LogsReader:
    def read(self, path: Path) -> List[str]:
        with open(path, errors="replace") as handle:
            return handle.read().splitlines()


class RandomInt:
    def random_int(self, n: int) -> int:
        return random.randrange(n)


class Sleeper:
    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class SSHIPWaiter:
    """Waits for SSH over the NAT forward, then for the host-only IP."""

    def __init__(self, sleeper: Optional[Sleeper] = None) -> None:
        self.sleeper = sleeper or Sleeper()

    def wait(self, driver, timeout: Optional[float] = None) -> None:
        deadline = make_deadline(timeout)

        def ssh_available() -> bool:
            try:
                run_ssh_command(driver, "exit 0")
            except SSHCommandError as exc:
                log("DEBUG", f"SSH not available yet: {exc}")
                return False
            return True

        if not wait_for(ssh_available, SSH_WAIT_ATTEMPTS, SSH_WAIT_INTERVAL, self.sleeper.sleep, deadline):
            raise WaitTimeoutError(f"Too many retries waiting for SSH to be available on {driver.cfg.machine_name}")

        if not wait_for(driver.host_only_ip_available, IP_WAIT_ATTEMPTS, IP_WAIT_INTERVAL, self.sleeper.sleep, deadline):
            raise NoIPAddressFoundError(
                f"Maximum number of retries ({IP_WAIT_ATTEMPTS}) exceeded waiting for an IP on "
                f"{driver.cfg.machine_name}"
            )
        driver.cfg.ip_address = driver.get_ip()
