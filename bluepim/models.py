from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional


BACKEND_ENTRA = "entra"
BACKEND_AZURE = "azure"
BACKENDS = (BACKEND_ENTRA, BACKEND_AZURE)

BACKEND_LABELS = {
    BACKEND_ENTRA: "Entra ID",
    BACKEND_AZURE: "Azure RBAC",
}

SCOPE_DIRECTORY = "Directory"
SCOPE_CUSTOM = "Custom"
SCOPE_RESOURCE_GROUP = "ResourceGroup"
SCOPE_SUBSCRIPTION = "Subscription"
SCOPE_RESOURCE = "Resource"
SCOPE_CLASSES = (SCOPE_DIRECTORY, SCOPE_CUSTOM, SCOPE_RESOURCE_GROUP, SCOPE_SUBSCRIPTION, SCOPE_RESOURCE)

ACTION_ACTIVATE = "activate"
ACTION_DEACTIVATE = "deactivate"
ACTION_REACTIVATE = "reactivate"
ACTIONS = (ACTION_ACTIVATE, ACTION_DEACTIVATE, ACTION_REACTIVATE)

OUTCOME_ACTIVATED = "Activated"
OUTCOME_DEACTIVATED = "Deactivated"
OUTCOME_ALREADY_ACTIVE = "AlreadyActive"
OUTCOME_ALREADY_INACTIVE = "AlreadyInactive"
OUTCOME_FAILED = "Failed"
OUTCOME_CANCELLED = "Cancelled"

SUCCESS_OUTCOMES = frozenset({OUTCOME_ACTIVATED, OUTCOME_DEACTIVATED, OUTCOME_ALREADY_ACTIVE})


def normalize_key_part(value: Optional[str]) -> str:
    # ARM is not consistent about casing between eligibility and assignment records.
    s = (value or "").strip().lower()
    if len(s) > 1:
        s = s.rstrip("/")
    return s


def identity_key(role_definition_id: Optional[str], scope_id: Optional[str]) -> tuple[str, str]:
    return normalize_key_part(role_definition_id), normalize_key_part(scope_id)


@dataclass(frozen=True)
class ActiveGrant:
    key: tuple[str, str]
    assignment_id: str
    activated_at: Optional[datetime]
    expires_at: datetime


@dataclass(frozen=True)
class Role:
    display_name: str
    role_definition_id: str
    principal_id: str
    scope_id: str
    scope_display_name: str
    scope_class: str
    backend: str
    is_active: bool = False
    active_assignment_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def identity_key(self) -> tuple[str, str]:
        return identity_key(self.role_definition_id, self.scope_id)

    @property
    def label(self) -> str:
        return f"{self.display_name} @ {self.scope_display_name} ({BACKEND_LABELS.get(self.backend, self.backend)})"

    def with_grant(self, grant: Optional[ActiveGrant]) -> "Role":
        if grant is None:
            return replace(self, is_active=False, active_assignment_id=None, expires_at=None)
        return replace(
            self,
            is_active=True,
            active_assignment_id=grant.assignment_id,
            expires_at=grant.expires_at,
        )

    def to_dict(self) -> dict:
        return {
            "display_name": self.display_name,
            "role_definition_id": self.role_definition_id,
            "principal_id": self.principal_id,
            "scope_id": self.scope_id,
            "scope_display_name": self.scope_display_name,
            "scope_class": self.scope_class,
            "backend": self.backend,
            "is_active": self.is_active,
            "active_assignment_id": self.active_assignment_id,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass(frozen=True)
class RequestResult:
    """
    Outcome of a single activation/deactivation request against a backend.

    `idempotent` is set when the backend said the requested state already holds
    (assignment exists on activate, assignment missing on deactivate). Such a
    result is still a success.
    """

    ok: bool
    idempotent: bool = False
    message: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def success(cls, *, idempotent: bool = False, message: Optional[str] = None, code: Optional[str] = None) -> "RequestResult":
        return cls(ok=True, idempotent=idempotent, message=message, code=code)

    @classmethod
    def failure(cls, message: str, *, code: Optional[str] = None) -> "RequestResult":
        return cls(ok=False, message=message, code=code)


@dataclass
class RoleOutcome:
    role: Role
    outcome: str
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES

    def to_dict(self) -> dict:
        out = {"role": self.role.to_dict(), "outcome": self.outcome}
        if self.reason:
            out["reason"] = self.reason
        return out


@dataclass
class TransitionResult:
    action: str
    success_count: int = 0
    failure_count: int = 0
    outcomes: list[RoleOutcome] = field(default_factory=list)
    cancelled: bool = False

    def record(self, outcome: RoleOutcome, *, tally: bool = True) -> None:
        self.outcomes.append(outcome)
        if not tally:
            return
        if outcome.outcome == OUTCOME_FAILED:
            self.failure_count += 1
        elif outcome.succeeded:
            self.success_count += 1

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "cancelled": self.cancelled,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
