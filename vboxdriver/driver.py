"""VirtualBox machine lifecycle: create, start, stop, restart, kill and remove."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Optional

from vboxdriver.boot2docker import B2DUpdater
from vboxdriver.collaborators import LogsReader, RandomInt, Sleeper, SSHIPWaiter
from vboxdriver.constants import (
    DEFAULT_HOSTONLY_CIDR,
    DEFAULT_SSH_USER,
    DISK_FILENAME,
    DOCKER_PORT,
    DRIVER_NAME,
    GUEST_SSH_PORT,
    HOSTONLY_REPAIR_DELAY,
    IMPORT_SSH_KEY,
    ISO_FILENAME,
    LOOPBACK_ADDRESS,
    MACHINES_DIRNAME,
    MAX_CPUS,
    NAT_INTERFACE,
    REMOVE_LOCK_DELAY,
    SSH_FORWARD_NAME,
    SSH_KEY_FILENAME,
    STATE_POLL_INTERVAL,
)
from vboxdriver.disk import DiskCreator
from vboxdriver.exceptions import (
    CLIExecutionError,
    HostNotRunningError,
    HostOnlyNetworkError,
    HyperVCoexistenceError,
    MachineNotFoundError,
    ManagerError,
    NoIPAddressFoundError,
    VTXRequiredError,
)
from vboxdriver.models import HostOnlyNetwork, MachineConfig, VMState
from vboxdriver.network import (
    HostOnlyNetworkManager,
    build_dhcp_server,
    parse_and_validate_cidr,
    random_ip_in_subnet,
)
from vboxdriver.parsers import (
    machine_not_found,
    parse_disk_info,
    parse_guest_ip,
    parse_vm_info,
    parse_vm_state,
    vtx_disabled_in_log,
)
from vboxdriver.portforward import set_port_forwarding
from vboxdriver.runtime import detect_host, get_share_drive_and_name
from vboxdriver.ssh import SSHKeyGenerator, run_ssh_command
from vboxdriver.utils import check_deadline, copy_file, log, make_deadline
from vboxdriver.vbm import VBoxManager, check_vboxmanage_version


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(deadline - time.monotonic(), 0.0)


class Driver:
    """Drives one VirtualBox machine through VBoxManage.

    Every collaborator can be replaced, which is how the tests run the whole
    lifecycle without a hypervisor: a scripted ``vbox``, an instant
    ``sleeper``, a fixed ``random_source`` and canned ``logs_reader`` output.
    """

    def __init__(
        self,
        config: MachineConfig,
        vbox=None,
        b2d_updater=None,
        ssh_key_generator=None,
        disk_creator=None,
        logs_reader=None,
        ip_waiter=None,
        random_source=None,
        sleeper=None,
    ) -> None:
        self.cfg = config
        self.vbox = vbox or VBoxManager()
        self.b2d_updater = b2d_updater or B2DUpdater()
        self.ssh_key_generator = ssh_key_generator or SSHKeyGenerator()
        self.disk_creator = disk_creator or DiskCreator()
        self.logs_reader = logs_reader or LogsReader()
        self.sleeper = sleeper or Sleeper()
        self.ip_waiter = ip_waiter or SSHIPWaiter(self.sleeper)
        self.random_source = random_source or RandomInt()
        self.networks = HostOnlyNetworkManager(self.vbox, self.sleeper)

    # ------------------------------------------------------------------
    # Paths and identity
    # ------------------------------------------------------------------
    @property
    def machine_name(self) -> str:
        return self.cfg.machine_name

    def resolve_store_path(self, *parts: str) -> Path:
        return self.cfg.store_path.joinpath(MACHINES_DIRNAME, self.machine_name, *parts)

    @property
    def ssh_key_path(self) -> Path:
        return self.resolve_store_path(SSH_KEY_FILENAME)

    @property
    def public_ssh_key_path(self) -> Path:
        return self.resolve_store_path(SSH_KEY_FILENAME + ".pub")

    @property
    def disk_path(self) -> Path:
        return self.resolve_store_path(DISK_FILENAME)

    @property
    def iso_path(self) -> Path:
        return self.resolve_store_path(ISO_FILENAME)

    @property
    def vm_log_path(self) -> Path:
        return self.resolve_store_path(self.machine_name, "Logs", "VBox.log")

    def driver_name(self) -> str:
        return DRIVER_NAME

    def get_ssh_hostname(self) -> str:
        return LOOPBACK_ADDRESS

    def get_ssh_username(self) -> str:
        if not self.cfg.ssh_user:
            self.cfg.ssh_user = DEFAULT_SSH_USER
        return self.cfg.ssh_user

    def get_url(self) -> str:
        ip = self.get_ip()
        if not ip:
            return ""
        return f"tcp://{ip}:{DOCKER_PORT}"

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------
    def pre_create_check(self) -> None:
        version = self.vbox.vbm_out("--version")
        check_vboxmanage_version(version.strip())

        if not self.cfg.no_vtx_check:
            host = detect_host()
            if host.hyperv_installed:
                raise HyperVCoexistenceError()
            if host.vtx_disabled:
                raise VTXRequiredError()

        # Fetch the ISO now so a download failure does not leave a half-created machine.
        self.b2d_updater.update_iso_cache(self.cfg.store_path, self.cfg.boot2docker_url)

        self.networks.list_adapters()

    def is_vtx_disabled_in_vm(self) -> bool:
        log("DEBUG", f"Checking vm logs: {self.vm_log_path}")
        try:
            lines = self.logs_reader.read(self.vm_log_path)
        except OSError as exc:
            raise ManagerError(f"Checking if hardware virtualization is enabled failed: {exc}")
        return vtx_disabled_in_log(lines)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create(self, timeout: Optional[float] = None) -> None:
        self.create_vm()
        log("INFO", "Starting the VM...")
        self.start(timeout=timeout)

    def create_vm(self) -> None:
        self.b2d_updater.copy_iso_to_machine_dir(
            self.cfg.store_path, self.machine_name, self.cfg.boot2docker_url
        )

        log("INFO", "Creating VirtualBox VM...")
        if self.cfg.boot2docker_import_vm:
            self._import_vm(self.cfg.boot2docker_import_vm)
        else:
            log("INFO", "Creating SSH key...")
            self.ssh_key_generator.generate(self.ssh_key_path)
            log("DEBUG", "Creating disk image...")
            self.disk_creator.create(self.cfg.disk_size, self.public_ssh_key_path, self.disk_path)

        self.vbox.vbm(
            "createvm",
            "--basefolder", str(self.resolve_store_path()),
            "--name", self.machine_name,
            "--register",
        )

        cpus = self.cfg.cpu
        if cpus < 1:
            cpus = os.cpu_count() or 1
        cpus = min(cpus, MAX_CPUS)
        log("DEBUG", f"VM CPUS: {cpus}")
        log("DEBUG", f"VM Memory: {self.cfg.memory}")

        self.vbox.vbm(
            "modifyvm", self.machine_name,
            "--firmware", "bios",
            "--bioslogofadein", "off",
            "--bioslogofadeout", "off",
            "--bioslogodisplaytime", "0",
            "--biosbootmenu", "disabled",
            "--ostype", "Linux26_64",
            "--cpus", str(cpus),
            "--memory", str(self.cfg.memory),
            "--acpi", "on",
            "--ioapic", "on",
            "--rtcuseutc", "on",
            "--natdnshostresolver1", "on" if self.cfg.host_dns_resolver else "off",
            "--natdnsproxy1", "on" if self.cfg.dns_proxy else "off",
            "--cpuhotplug", "off",
            "--pae", "on",
            "--hpet", "on",
            "--hwvirtex", "on",
            "--nestedpaging", "on",
            "--largepages", "on",
            "--vtxvpid", "on",
            "--accelerate3d", "off",
            "--boot1", "dvd",
        )
        self.vbox.vbm(
            "modifyvm", self.machine_name,
            "--nic1", "nat",
            "--nictype1", "82540EM",
            "--cableconnected1", "on",
        )
        self.vbox.vbm(
            "storagectl", self.machine_name,
            "--name", "SATA",
            "--add", "sata",
            "--hostiocache", "on",
        )
        self.vbox.vbm(
            "storageattach", self.machine_name,
            "--storagectl", "SATA",
            "--port", "0",
            "--device", "0",
            "--type", "dvddrive",
            "--medium", str(self.iso_path),
        )
        self.vbox.vbm(
            "storageattach", self.machine_name,
            "--storagectl", "SATA",
            "--port", "1",
            "--device", "0",
            "--type", "hdd",
            "--medium", str(self.disk_path),
        )

        # Lets VBoxService automount shares at the root when it runs in the guest.
        self.vbox.vbm(
            "guestproperty", "set", self.machine_name,
            "/VirtualBox/GuestAdd/SharedFolders/MountPrefix", "/",
        )
        self.vbox.vbm(
            "guestproperty", "set", self.machine_name,
            "/VirtualBox/GuestAdd/SharedFolders/MountDir", "/",
        )

        if not self.cfg.no_share:
            self._add_shared_folder()

    def _import_vm(self, name: str) -> None:
        try:
            self.vbox.vbm("controlvm", name, "poweroff")
        except CLIExecutionError as exc:
            log("DEBUG", f"Could not power off {name} before import: {exc}")

        info_text = self.vbox.vbm_out("showvminfo", name, "--machinereadable")
        disk = parse_disk_info(info_text)
        if not disk.path or not Path(disk.path).exists():
            raise ManagerError(f"Disk of VM '{name}' not found: '{disk.path}'")
        self.vbox.vbm("clonehd", disk.path, str(self.disk_path))

        log("DEBUG", "Importing VM settings...")
        vm_info = parse_vm_info(info_text)
        self.cfg.cpu = vm_info.cpus
        self.cfg.memory = vm_info.memory

        log("DEBUG", "Importing SSH key...")
        copy_file(Path.home() / IMPORT_SSH_KEY, self.ssh_key_path)

    def _add_shared_folder(self) -> None:
        share_name, share_dir = get_share_drive_and_name()
        if not share_dir or not Path(share_dir).exists():
            return
        if not share_name:
            # VirtualBox mishandles share names starting with "/".
            share_name = share_dir.lstrip("/")
        log("DEBUG", f"Sharing {share_dir} as {share_name}")
        self.vbox.vbm(
            "sharedfolder", "add", self.machine_name,
            "--name", share_name,
            "--hostpath", share_dir,
            "--automount",
        )
        self.vbox.vbm(
            "setextradata", self.machine_name,
            f"VBoxInternal2/SharedFoldersEnableSymlinksCreate/{share_name}", "1",
        )

    # ------------------------------------------------------------------
    # Host-only network
    # ------------------------------------------------------------------
    def setup_host_only_network(self) -> HostOnlyNetwork:
        """Make sure NIC2 is attached to an adapter matching the configured CIDR."""
        cidr = self.cfg.hostonly_cidr or DEFAULT_HOSTONLY_CIDR
        ip, network = parse_and_validate_cidr(cidr)

        log("DEBUG", f"Searching for hostonly interface for IPv4: {ip} and Mask: {network.netmask}")
        adapter = self.networks.find_or_create(ip, network.netmask)

        log("DEBUG", "Removing orphan DHCP servers...")
        self.networks.remove_orphan_dhcp_servers()

        dhcp_ip = random_ip_in_subnet(ip, self.random_source)
        log("DEBUG", f"Adding/Modifying DHCP server {dhcp_ip}...")
        self.networks.add_or_modify_dhcp_server(adapter.name, build_dhcp_server(network, dhcp_ip))

        self.vbox.vbm(
            "modifyvm", self.machine_name,
            "--nic2", "hostonly",
            "--nictype2", self.cfg.hostonly_nictype,
            "--nicpromisc2", self.cfg.hostonly_promisc,
            "--hostonlyadapter2", adapter.name,
            "--cableconnected2", "on",
        )
        return adapter

    def _host_only_adapter_intact(self) -> bool:
        ip, network = parse_and_validate_cidr(self.cfg.hostonly_cidr or DEFAULT_HOSTONLY_CIDR)
        return self.networks.find(self.networks.list_adapters(), ip, network.netmask) is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _boot_headless(self) -> None:
        try:
            self.vbox.vbm("startvm", self.machine_name, "--type", "headless")
        except CLIExecutionError as exc:
            raise ManagerError(f"Unable to start the VM: {exc}") from exc

    def _wait_for_ip(self, deadline: Optional[float]) -> None:
        log("INFO", "Waiting for an IP...")
        self.ip_waiter.wait(self, timeout=_remaining(deadline))

    def start(self, timeout: Optional[float] = None) -> None:
        deadline = make_deadline(timeout)
        current = self.get_state()

        adapter: Optional[HostOnlyNetwork] = None
        if current == VMState.STOPPED:
            # Re-create the network if it went away since the last run.
            adapter = self.setup_host_only_network()

        if current in (VMState.STOPPED, VMState.SAVED):
            self.cfg.ssh_port = set_port_forwarding(
                self.vbox,
                self.machine_name,
                NAT_INTERFACE,
                SSH_FORWARD_NAME,
                "tcp",
                GUEST_SSH_PORT,
                self.cfg.ssh_port,
            )
            self._boot_headless()
        elif current == VMState.PAUSED:
            self.vbox.vbm("controlvm", self.machine_name, "resume", "--type", "headless")
            log("INFO", "Resuming VM ...")
        else:
            log("INFO", "VM not in restartable state")

        if self.is_vtx_disabled_in_vm():
            raise VTXRequiredError()

        self._wait_for_ip(deadline)

        if adapter is None or self._host_only_adapter_intact():
            return

        # Mostly seen on Windows: the adapter loses its address once the VM has booted.
        log("WARN", "The host-only adapter is corrupted. Let's stop the VM, fix the host-only adapter and restart the VM")
        self.stop(timeout=_remaining(deadline))

        # VirtualBox must release the adapter before it can be reconfigured.
        check_deadline(deadline)
        self.sleeper.sleep(HOSTONLY_REPAIR_DELAY)
        self.networks.repair(adapter)
        check_deadline(deadline)
        self.sleeper.sleep(HOSTONLY_REPAIR_DELAY)

        self._boot_headless()
        self._wait_for_ip(deadline)

        if not self._host_only_adapter_intact():
            raise HostOnlyNetworkError(
                f"The host-only adapter {adapter.name} is still corrupted after repair. "
                "Remove it from VirtualBox and start the machine again"
            )

    def stop(self, timeout: Optional[float] = None) -> None:
        deadline = make_deadline(timeout)
        if self.get_state() == VMState.PAUSED:
            self.vbox.vbm("controlvm", self.machine_name, "resume")
            log("INFO", "Resuming VM ...")

        self.vbox.vbm("controlvm", self.machine_name, "acpipowerbutton")
        while self.get_state() == VMState.RUNNING:
            check_deadline(deadline)
            self.sleeper.sleep(STATE_POLL_INTERVAL)

        self.cfg.ip_address = ""

    def restart(self, timeout: Optional[float] = None) -> None:
        """Hard reset a machine that is known to be running."""
        deadline = make_deadline(timeout)
        self.vbox.vbm("controlvm", self.machine_name, "reset")
        self.cfg.ip_address = ""
        self._wait_for_ip(deadline)

    def kill(self) -> None:
        self.vbox.vbm("controlvm", self.machine_name, "poweroff")

    def remove(self) -> None:
        try:
            current = self.get_state()
        except MachineNotFoundError:
            log("INFO", "machine does not exist, assuming it has been removed already")
            return

        if current == VMState.RUNNING:
            self.stop()
        elif current != VMState.STOPPED:
            self.kill()

        # VirtualBox does not release its lock right after the VM stops.
        self.sleeper.sleep(REMOVE_LOCK_DELAY)
        self.vbox.vbm("unregistervm", "--delete", self.machine_name)

    # ------------------------------------------------------------------
    # State and address
    # ------------------------------------------------------------------
    def get_state(self) -> VMState:
        try:
            stdout, _ = self.vbox.vbm_out_err("showvminfo", self.machine_name, "--machinereadable")
        except CLIExecutionError as exc:
            if machine_not_found(exc.stderr):
                raise MachineNotFoundError(self.machine_name) from exc
            raise
        return parse_vm_state(stdout)

    def get_ip(self) -> str:
        # Addresses come from the host-only DHCP server, so only a running VM has one.
        if self.get_state() != VMState.RUNNING:
            raise HostNotRunningError(self.machine_name)

        output = run_ssh_command(self, "ip addr show dev eth1")
        log("DEBUG", f"SSH returned: {output}\nEND SSH")
        ip = parse_guest_ip(output)
        if ip is None:
            raise NoIPAddressFoundError(f"No IP address found {output}")
        return ip

    def host_only_ip_available(self) -> bool:
        try:
            ip = self.get_ip()
        except ManagerError as exc:
            log("DEBUG", f"ERROR getting IP: {exc}")
            return False
        if not ip:
            return False
        log("DEBUG", f"IP is {ip}")
        return True
