"""Dependency installation and build."""

from tap_deploy.deps.cache import CacheGuard
from tap_deploy.deps.installer import DependencyInstaller, node_memory_option
from tap_deploy.deps.strategies import CommandStrategy, run_strategy_chain

__all__ = [
    "CacheGuard",
    "DependencyInstaller",
    "node_memory_option",
    "CommandStrategy",
    "run_strategy_chain",
]
