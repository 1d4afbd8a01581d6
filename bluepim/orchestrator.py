from __future__ import annotations

import threading
from typing import Callable, Mapping, Optional, Sequence

from bluepim import console
from bluepim.backends.base import RoleBackend
from bluepim.config import DEFAULT_DURATION_HOURS, DEFAULT_JUSTIFICATION, DEFAULT_PACING_SECONDS, DEFAULT_SETTLE_SECONDS
from bluepim.models import (
    ACTION_ACTIVATE,
    ACTION_DEACTIVATE,
    ACTIONS,
    OUTCOME_ACTIVATED,
    OUTCOME_ALREADY_ACTIVE,
    OUTCOME_ALREADY_INACTIVE,
    OUTCOME_CANCELLED,
    OUTCOME_DEACTIVATED,
    OUTCOME_FAILED,
    RequestResult,
    Role,
    RoleOutcome,
    TransitionResult,
)


class TransitionOrchestrator:
    """
    Runs one Activate / Deactivate / Reactivate batch, one backend call at a time.

    - Calls are issued in selection order with `pacing_seconds` between them.
    - A failure on one role never stops the rest of the batch.
    - `stop_event` is checked between calls (never during one); once set, the
      remaining roles are reported as Cancelled.
    - Reactivate deactivates the active roles first, waits `settle_seconds`, then
      activates the whole selection.
    """

    def __init__(
        self,
        backends: Mapping[str, RoleBackend],
        *,
        justification: str = DEFAULT_JUSTIFICATION,
        duration_hours: int = DEFAULT_DURATION_HOURS,
        pacing_seconds: float = DEFAULT_PACING_SECONDS,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        stop_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], object]] = None,
        quiet: bool = False,
    ) -> None:
        self.backends = dict(backends)
        self.justification = (justification or "").strip() or DEFAULT_JUSTIFICATION
        self.duration_hours = duration_hours
        self.pacing_seconds = pacing_seconds
        self.settle_seconds = settle_seconds
        self.stop_event = stop_event or threading.Event()
        # Event.wait returns early when the batch is cancelled.
        self._sleep = sleep or self.stop_event.wait
        self.quiet = quiet
        self._calls = 0

    def run(self, action: str, roles: Sequence[Role]) -> TransitionResult:
        if action not in ACTIONS:
            raise ValueError(f"Unknown action '{action}'. Valid values: {', '.join(ACTIONS)}")
        self._calls = 0
        result = TransitionResult(action=action)
        if action == ACTION_ACTIVATE:
            self._activate_all(roles, result)
        elif action == ACTION_DEACTIVATE:
            self._deactivate_all(roles, result)
        else:
            self._reactivate_all(roles, result)
        return result

    # Batches

    def _activate_all(
        self,
        roles: Sequence[Role],
        result: TransitionResult,
        notes: Optional[dict[int, str]] = None,
        cancel_reasons: Optional[dict[int, str]] = None,
    ) -> None:
        for i, role in enumerate(roles):
            if self._cancelled(roles, i, result, cancel_reasons):
                return
            res = self._call(role, activate=True)
            outcome = self._activation_outcome(role, res)
            if notes and i in notes and outcome.reason is None:
                outcome.reason = notes[i]
            self._report(outcome)
            result.record(outcome)

    def _deactivate_all(self, roles: Sequence[Role], result: TransitionResult) -> None:
        for i, role in enumerate(roles):
            if not role.is_active:
                outcome = RoleOutcome(role, OUTCOME_ALREADY_INACTIVE)
                self._report(outcome)
                result.record(outcome, tally=False)
                continue
            if self._cancelled(roles, i, result):
                return
            res = self._call(role, activate=False)
            if res.ok:
                outcome = RoleOutcome(role, OUTCOME_DEACTIVATED, res.message if res.idempotent else None)
            else:
                outcome = RoleOutcome(role, OUTCOME_FAILED, res.message)
            self._report(outcome)
            result.record(outcome)

    def _reactivate_all(self, roles: Sequence[Role], result: TransitionResult) -> None:
        notes: dict[int, str] = {}
        # What a cancelled role has already been through in the deactivation phase.
        cancel_reasons: dict[int, str] = {}
        deactivated = 0
        for i, role in enumerate(roles):
            if not role.is_active:
                continue
            if self._cancelled(roles, 0, result, cancel_reasons):
                return
            res = self._call(role, activate=False)
            deactivated += 1
            if res.ok:
                cancel_reasons[i] = "deactivated; re-activation cancelled"
            else:
                notes[i] = f"deactivation before reactivation failed: {res.message}"
                cancel_reasons[i] = notes[i]
                if not self.quiet:
                    console.warn(f"Deactivation of {role.label} failed (continuing with activation): {res.message}")

        if deactivated and self.settle_seconds > 0:
            if not self.quiet:
                console.info(f"Waiting {self.settle_seconds:g}s for deactivations to settle before re-activating...")
            self._sleep(self.settle_seconds)
            # The settle delay replaces the pacing delay before the next call.
            self._calls = 0

        self._activate_all(roles, result, notes, cancel_reasons)

    # Single calls

    def _call(self, role: Role, *, activate: bool) -> RequestResult:
        backend = self.backends.get(role.backend)
        if backend is None:
            return RequestResult.failure(f"No backend configured for '{role.backend}' roles")
        if self._calls and self.pacing_seconds > 0:
            self._sleep(self.pacing_seconds)
        self._calls += 1
        if activate:
            return backend.request_activation(role, self.justification, self.duration_hours)
        return backend.request_deactivation(role)

    @staticmethod
    def _activation_outcome(role: Role, res: RequestResult) -> RoleOutcome:
        if not res.ok:
            return RoleOutcome(role, OUTCOME_FAILED, res.message)
        if res.idempotent:
            return RoleOutcome(role, OUTCOME_ALREADY_ACTIVE)
        return RoleOutcome(role, OUTCOME_ACTIVATED)

    def _cancelled(
        self,
        roles: Sequence[Role],
        start: int,
        result: TransitionResult,
        reasons: Optional[dict[int, str]] = None,
    ) -> bool:
        """Record roles[start:] as Cancelled once the stop event is set."""
        if not self.stop_event.is_set():
            return False
        reasons = reasons or {}
        for i in range(start, len(roles)):
            result.record(RoleOutcome(roles[i], OUTCOME_CANCELLED, reasons.get(i)), tally=False)
        result.cancelled = True
        if not self.quiet:
            console.warn(f"Cancelled; {len(roles) - start} role(s) not processed.")
        return True

    def _report(self, outcome: RoleOutcome) -> None:
        if self.quiet:
            return
        label = outcome.role.label
        if outcome.outcome == OUTCOME_FAILED:
            console.error(f"{label}: failed: {outcome.reason}")
        elif outcome.outcome in (OUTCOME_ALREADY_ACTIVE, OUTCOME_ALREADY_INACTIVE):
            console.info(f"{label}: {outcome.outcome}")
        else:
            console.ok(f"{label}: {outcome.outcome}")
