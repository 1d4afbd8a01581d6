from __future__ import annotations

import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import requests

from bluepim import console
from bluepim.auth import BearerTokenProvider
from bluepim.errors import AuthenticationError, BackendRejection, TransportError
from bluepim.models import ActiveGrant, BACKEND_LABELS, RequestResult, Role, identity_key
from bluepim.scope import NameLookup


ALREADY_EXISTS_CODES = frozenset({"roleassignmentexists"})
DOES_NOT_EXIST_CODES = frozenset({"roleassignmentdoesnotexist"})
# Codes too generic to decide on; fall back to the message text for these.
GENERIC_ERROR_CODES = frozenset({"", "badrequest", "conflict", "notfound", "unknownerror", "internalservererror"})

ALREADY_EXISTS_MESSAGES = ("already exists",)
DOES_NOT_EXIST_MESSAGES = ("not found", "does not exist")

# fromisoformat before 3.11 only takes 3 or 6 fractional digits.
_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_iso_dt(s: Any) -> Optional[datetime]:
    if not isinstance(s, str) or not s.strip():
        return None
    value = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), s.strip().replace("Z", "+00:00"))
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def fmt_utc_z(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def iso_duration_hours(hours: int) -> str:
    return f"PT{int(hours)}H"


def error_details(resp: Any) -> tuple[Optional[str], str]:
    """Extract (code, message) from a Graph/ARM error response."""
    code: Optional[str] = None
    message: Optional[str] = None
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            code = err.get("code")
            message = err.get("message")
        elif isinstance(err, str):
            message = err
        message = message or body.get("message")
    if not message:
        text = (getattr(resp, "text", "") or "").strip()
        message = text[:300] or f"HTTP {resp.status_code}"
    return code, message


def is_idempotent_error(
    code: Optional[str],
    message: Optional[str],
    *,
    codes: frozenset[str],
    messages: tuple[str, ...],
) -> bool:
    c = (code or "").strip().lower()
    if c in codes:
        return True
    if c not in GENERIC_ERROR_CODES:
        return False
    m = (message or "").lower()
    return any(x in m for x in messages)


class RoleBackend(ABC):
    """
    One authorization backend: eligibility, active grants and self (de)activation.

    Subclasses only build requests and map records. Listing failures degrade to an
    empty result and are recorded in `errors`; request failures come back as
    RequestResult values so a batch never aborts on one role.
    """

    name: str = ""
    token_scope: str = ""
    expiration_type: str = "AfterDuration"

    def __init__(
        self,
        credential: Any,
        *,
        session: Optional[requests.Session] = None,
        timeout: int = 60,
        scope_names: Optional[NameLookup] = None,
        now: Optional[Callable[[], datetime]] = None,
        tokens: Optional[BearerTokenProvider] = None,
    ) -> None:
        self.tokens = tokens or BearerTokenProvider(credential, self.token_scope, backend=self.name)
        self.session = session or requests.Session()
        self.timeout = timeout
        self.scope_names = scope_names
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.errors: list[dict] = []

    @property
    def label(self) -> str:
        return BACKEND_LABELS.get(self.name, self.name)

    @property
    def available(self) -> bool:
        return self.tokens.error is None

    def fail(self, where: str, e: Exception) -> None:
        self.errors.append({"backend": self.name, "where": where, "error": str(e)})
        console.warn(f"{self.label}: {where} failed: {e}")

    # HTTP plumbing

    def _send(self, method: str, url: str, *, params: Optional[dict] = None, body: Optional[dict] = None) -> requests.Response:
        headers = self.tokens.headers()
        try:
            return self.session.request(method, url, headers=headers, params=params, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    def _get_json(self, url: str, params: Optional[dict] = None) -> dict[str, Any]:
        r = self._send("GET", url, params=params)
        if r.status_code >= 400:
            code, message = error_details(r)
            raise TransportError(f"GET failed ({r.status_code}) {url}: {message}", status_code=r.status_code, code=code)
        try:
            data = r.json()
        except ValueError as e:
            raise TransportError(f"Unexpected response from {url} (not JSON)") from e
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response from {url} (not a JSON object)")
        return data

    def _get_paged(self, url: str, params: Optional[dict], next_key: str) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        next_url: Optional[str] = url
        while next_url:
            data = self._get_json(next_url, params=params)
            params = None  # nextLink includes query
            vals = data.get("value") or []
            if isinstance(vals, list):
                out.extend(v for v in vals if isinstance(v, dict))
            next_url = data.get(next_key)
        return out

    # Public contract

    def list_eligible(self, principal_id: str) -> list[Role]:
        try:
            return self._list_eligible(principal_id)
        except (AuthenticationError, TransportError) as e:
            self.fail("list eligible roles", e)
            return []

    def list_active(self, principal_id: str) -> dict[tuple[str, str], ActiveGrant]:
        try:
            grants = self._list_active(principal_id)
        except (AuthenticationError, TransportError) as e:
            self.fail("list active assignments", e)
            return {}
        out: dict[tuple[str, str], ActiveGrant] = {}
        for g in grants:
            # Keep the grant that lasts longest when a key shows up twice.
            prev = out.get(g.key)
            if prev is None or g.expires_at > prev.expires_at:
                out[g.key] = g
        return out

    def request_activation(self, role: Role, justification: str, duration_hours: int) -> RequestResult:
        try:
            self._raise_for_rejection(self._submit_activation(role, justification, duration_hours))
        except BackendRejection as e:
            if is_idempotent_error(e.code, str(e), codes=ALREADY_EXISTS_CODES, messages=ALREADY_EXISTS_MESSAGES):
                return RequestResult.success(idempotent=True, message=str(e), code=e.code)
            return RequestResult.failure(_describe(e), code=e.code)
        except (AuthenticationError, TransportError) as e:
            return RequestResult.failure(str(e))
        return RequestResult.success()

    def request_deactivation(self, role: Role) -> RequestResult:
        try:
            self._raise_for_rejection(self._submit_deactivation(role))
        except BackendRejection as e:
            missing = is_idempotent_error(e.code, str(e), codes=DOES_NOT_EXIST_CODES, messages=DOES_NOT_EXIST_MESSAGES)
            if missing or (e.status_code == 404 and (e.code or "").strip().lower() in GENERIC_ERROR_CODES):
                return RequestResult.success(idempotent=True, message=str(e), code=e.code)
            return RequestResult.failure(_describe(e), code=e.code)
        except (AuthenticationError, TransportError) as e:
            return RequestResult.failure(str(e))
        return RequestResult.success()

    @staticmethod
    def _raise_for_rejection(r: requests.Response) -> None:
        if r.status_code < 400:
            return
        code, message = error_details(r)
        raise BackendRejection(message, status_code=r.status_code, code=code)

    # Helpers shared by both adapters

    def _grant_from(self, role_definition_id: Any, scope_id: Any, assignment_id: Any, start: Any, end: Any) -> Optional[ActiveGrant]:
        expires_at = parse_iso_dt(end)
        if not isinstance(role_definition_id, str) or not isinstance(scope_id, str) or not assignment_id or expires_at is None:
            return None
        return ActiveGrant(
            key=identity_key(role_definition_id, scope_id),
            assignment_id=str(assignment_id),
            activated_at=parse_iso_dt(start),
            expires_at=expires_at,
        )

    def _schedule(self, duration_hours: int) -> dict[str, Any]:
        return {
            "startDateTime": fmt_utc_z(self._now()),
            "expiration": {"type": self.expiration_type, "duration": iso_duration_hours(duration_hours)},
        }

    @abstractmethod
    def _list_eligible(self, principal_id: str) -> list[Role]:
        raise NotImplementedError

    @abstractmethod
    def _list_active(self, principal_id: str) -> list[ActiveGrant]:
        raise NotImplementedError

    @abstractmethod
    def _submit_activation(self, role: Role, justification: str, duration_hours: int) -> requests.Response:
        raise NotImplementedError

    @abstractmethod
    def _submit_deactivation(self, role: Role) -> requests.Response:
        raise NotImplementedError


def _describe(e: BackendRejection) -> str:
    detail = f"{e.code}: {e}" if e.code else str(e)
    return f"HTTP {e.status_code} {detail}" if e.status_code else detail
