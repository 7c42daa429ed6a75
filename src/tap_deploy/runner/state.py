"""Per-market state machine and run-level cancellation."""

from __future__ import annotations

import threading

from tap_deploy.models import MarketState

ALLOWED_TRANSITIONS: dict[MarketState, frozenset[MarketState]] = {
    "PENDING": frozenset({"INSTALLING"}),
    "INSTALLING": frozenset({"PUBLISHING", "FAILED"}),
    "PUBLISHING": frozenset({"VERIFYING", "FAILED"}),
    "VERIFYING": frozenset({"DONE"}),
    "DONE": frozenset(),
    "FAILED": frozenset(),
}


class MarketStateMachine:
    """Tracks one market through PENDING -> INSTALLING -> PUBLISHING -> VERIFYING -> DONE."""

    def __init__(self, market: str) -> None:
        self.market = market
        self.state: MarketState = "PENDING"
        self.history: list[MarketState] = ["PENDING"]

    def advance(self, target: MarketState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(f"illegal transition for market {self.market}: {self.state} -> {target}")
        self.state = target
        self.history.append(target)

    def fail(self) -> MarketState:
        """Move to FAILED and return the stage that failed."""

        failed_stage = self.state
        self.advance("FAILED")
        return failed_stage

    @property
    def terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.state]


class RunCancellation:
    """Operator abort flag. Stops new markets; in-flight markets finish."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()
