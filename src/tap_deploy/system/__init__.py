"""Adapters for external tools: subprocesses, packages, services, git."""

from tap_deploy.system.commands import CommandResult, CommandRunner, Runner
from tap_deploy.system.git_sync import CheckoutInfo, GitOutcome, ensure_checkout, inspect_checkout
from tap_deploy.system.packages import PackageOutcome, ensure_packages, missing_packages
from tap_deploy.system.preflight import DiskCheck, check_disk_space
from tap_deploy.system.services import ServiceManager, ServiceManagerLike, ServiceOutcome

__all__ = [
    "CommandResult",
    "CommandRunner",
    "Runner",
    "CheckoutInfo",
    "GitOutcome",
    "ensure_checkout",
    "inspect_checkout",
    "PackageOutcome",
    "ensure_packages",
    "missing_packages",
    "DiskCheck",
    "check_disk_space",
    "ServiceManager",
    "ServiceManagerLike",
    "ServiceOutcome",
]
