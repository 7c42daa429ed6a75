"""Ordered fallback strategies with explicit outcomes.

A chain is tried in order and stops at the first strategy that succeeds.
The first strategy succeeding is ``SUCCEEDED``; a later one succeeding is
``DEGRADED`` with that strategy's declared reason; each strategy that fails
(non-zero exit, timeout, missing executable) is recorded as ``FAILED``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from tap_deploy.errors import CommandTimeout
from tap_deploy.models import StepOutcome
from tap_deploy.system.commands import Runner

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandStrategy:
    """One way of performing a step."""

    name: str
    args: tuple[str, ...]
    degraded_reason: str | None = None


def run_strategy_chain(
    strategies: Sequence[CommandStrategy],
    *,
    runner: Runner,
    cwd: Path,
    timeout_sec: float | None,
    env: Mapping[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> tuple[StepOutcome, ...]:
    """Run strategies until one succeeds and return every outcome recorded."""

    effective_logger = logger or LOGGER
    outcomes: list[StepOutcome] = []
    for position, strategy in enumerate(strategies):
        result = runner.run(strategy.args, cwd=cwd, timeout_sec=timeout_sec, env=env)
        if result.ok:
            if position == 0:
                outcomes.append(
                    StepOutcome(
                        strategy=strategy.name,
                        status="SUCCEEDED",
                        duration_sec=result.duration_sec,
                        returncode=result.returncode,
                    )
                )
            else:
                reason = strategy.degraded_reason or f"fell back to {strategy.name}"
                effective_logger.warning("strategy.degraded strategy=%s reason=%s", strategy.name, reason)
                outcomes.append(
                    StepOutcome(
                        strategy=strategy.name,
                        status="DEGRADED",
                        reason=reason,
                        duration_sec=result.duration_sec,
                        returncode=result.returncode,
                    )
                )
            break

        reason = result.failure_reason()
        if result.timed_out:
            reason = CommandTimeout(reason).reason
        effective_logger.warning("strategy.failed strategy=%s reason=%s", strategy.name, reason)
        outcomes.append(
            StepOutcome(
                strategy=strategy.name,
                status="FAILED",
                reason=reason,
                duration_sec=result.duration_sec,
                returncode=result.returncode,
            )
        )
    return tuple(outcomes)
