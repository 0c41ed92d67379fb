"""CLI entry points for the VirtualBox machine driver."""

from __future__ import annotations

import argparse
import dataclasses
import shutil
from pathlib import Path
from typing import List, Optional

from vboxdriver.config import (
    ENV_OPTIONS,
    list_machines,
    load_machine,
    machine_config_path,
    machine_dir,
    parse_env,
    save_machine,
    validate_config,
)
from vboxdriver.constants import DEFAULT_STORAGE_PATH
from vboxdriver.driver import Driver
from vboxdriver.exceptions import MachineNotFoundError, ManagerError
from vboxdriver.models import MachineConfig
from vboxdriver.utils import log, set_verbose

_BOOL_FIELDS = {"host_dns_resolver", "no_share", "dns_proxy", "no_vtx_check"}
_INT_FIELDS = {"cpu", "memory", "disk_size"}

_HELP = {
    "cpu": "number of CPUs for the machine (-1 to use the number of CPUs available)",
    "memory": "size of memory for host in MB",
    "disk_size": "size of disk for host in MB",
    "boot2docker_url": "URL or path of the boot2docker image; latest release when empty",
    "boot2docker_import_vm": "name of an existing boot2docker VM to import",
    "host_dns_resolver": "use the host DNS resolver",
    "hostonly_cidr": "CIDR of the host-only adapter",
    "hostonly_nictype": "host-only network adapter type",
    "hostonly_promisc": "host-only network adapter promiscuous mode (deny, allow-vms, allow-all)",
    "no_share": "disable the mount of the home directory",
    "dns_proxy": "proxy all DNS requests to the host",
    "no_vtx_check": "disable checking for the availability of hardware virtualization before the VM is started",
}


def show_config(cfg: MachineConfig) -> None:
    """Print the resolved machine configuration."""
    for field in dataclasses.fields(cfg):
        print(f"  {field.name}: {getattr(cfg, field.name)}")


def apply_flag_overrides(cfg: MachineConfig, args: argparse.Namespace) -> MachineConfig:
    for env_name, field_name, flag in ENV_OPTIONS:
        value = getattr(args, field_name, None)
        if value is None:
            continue
        log("DEBUG", f"{flag} overrides {env_name}")
        setattr(cfg, field_name, value)
    return validate_config(cfg)


def _add_driver_flags(parser: argparse.ArgumentParser) -> None:
    for env_name, field_name, flag in ENV_OPTIONS:
        help_text = f"{_HELP[field_name]} [${env_name}]"
        if field_name in _BOOL_FIELDS:
            parser.add_argument(flag, dest=field_name, action="store_true", default=None, help=help_text)
        elif field_name in _INT_FIELDS:
            parser.add_argument(flag, dest=field_name, type=int, default=None, metavar="N", help=help_text)
        else:
            parser.add_argument(flag, dest=field_name, default=None, help=help_text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vboxdriver", description="VirtualBox machine driver")
    parser.add_argument(
        "--storage-path",
        type=Path,
        default=DEFAULT_STORAGE_PATH,
        help="Directory holding machines and the boot image cache [$VBOXDRIVER_STORAGE_PATH]",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create and start a machine")
    create.add_argument("name")
    create.add_argument("--timeout", type=float, default=None, help="Seconds to wait for the machine to boot")
    _add_driver_flags(create)

    for command, help_text in (
        ("start", "Start a machine"),
        ("stop", "Stop a machine gracefully"),
        ("restart", "Hard reset a running machine"),
    ):
        p = sub.add_parser(command, help=help_text)
        p.add_argument("name")
        p.add_argument("--timeout", type=float, default=None, help="Seconds to wait before giving up")

    for command, help_text in (
        ("kill", "Power off a machine immediately"),
        ("rm", "Remove a machine and its files"),
        ("status", "Print the machine state"),
        ("ip", "Print the host-only IP of a machine"),
        ("url", "Print the Docker URL of a machine"),
        ("inspect", "Print the stored machine configuration"),
    ):
        p = sub.add_parser(command, help=help_text)
        p.add_argument("name")

    sub.add_parser("ls", help="List machines in the storage path")
    return parser


def cmd_create(args: argparse.Namespace) -> int:
    if machine_config_path(args.storage_path, args.name).exists():
        raise ManagerError(f"Machine '{args.name}' already exists")
    cfg = apply_flag_overrides(parse_env(args.name, args.storage_path), args)
    driver = Driver(cfg)
    driver.pre_create_check()
    # Persist before provisioning so a half-created machine can still be removed.
    save_machine(cfg)
    try:
        driver.create(timeout=args.timeout)
    finally:
        save_machine(cfg)
    log("SUCCESS", f"Machine '{cfg.machine_name}' is running at {cfg.ip_address or 'an unknown address'}")
    return 0


def cmd_rm(args: argparse.Namespace) -> int:
    try:
        cfg = load_machine(args.storage_path, args.name)
    except MachineNotFoundError:
        log("INFO", f"Machine '{args.name}' does not exist, assuming it has been removed already")
        return 0
    Driver(cfg).remove()
    shutil.rmtree(machine_dir(args.storage_path, args.name))
    log("SUCCESS", f"Removed machine '{args.name}'")
    return 0


def cmd_ls(args: argparse.Namespace) -> int:
    names = list_machines(args.storage_path)
    if not names:
        log("INFO", f"No machines in {args.storage_path}")
        return 0
    width = max(len(name) for name in names)
    for name in names:
        try:
            state = str(Driver(load_machine(args.storage_path, name)).get_state()) or "Unknown"
        except ManagerError as exc:
            log("DEBUG", f"Cannot read state of {name}: {exc}")
            state = "Error"
        print(f"  {name:<{width}}  {state}")
    return 0


def run_machine_command(args: argparse.Namespace) -> int:
    cfg = load_machine(args.storage_path, args.name)
    if args.command == "inspect":
        show_config(cfg)
        return 0

    driver = Driver(cfg)
    if args.command == "status":
        print(str(driver.get_state()) or "Unknown")
        return 0
    if args.command == "ip":
        print(driver.get_ip())
        return 0
    if args.command == "url":
        print(driver.get_url())
        return 0

    try:
        if args.command == "start":
            driver.start(timeout=args.timeout)
        elif args.command == "stop":
            driver.stop(timeout=args.timeout)
        elif args.command == "restart":
            driver.restart(timeout=args.timeout)
        elif args.command == "kill":
            driver.kill()
    finally:
        save_machine(cfg)
    log("SUCCESS", f"{args.command.capitalize()} of '{cfg.machine_name}' complete")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.debug:
        set_verbose(True)

    try:
        if args.command == "create":
            return cmd_create(args)
        if args.command == "rm":
            return cmd_rm(args)
        if args.command == "ls":
            return cmd_ls(args)
        return run_machine_command(args)
    except ManagerError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        log("ERROR", "This is likely a bug. Please report it with the output of --debug.")
        import traceback

        traceback.print_exc()
        return 1
