from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from bluepim.backends.base import RoleBackend
from bluepim.models import ActiveGrant, BACKENDS, Role
from bluepim.progress import StageProgress


GrantMap = dict[tuple[str, str], ActiveGrant]

DISCOVERY_STAGES = ["eligible", "active", "done"]


def _merge_backend(roles: Sequence[Role], active: GrantMap) -> list[Role]:
    out: list[Role] = []
    seen: set[tuple[str, str]] = set()
    for role in roles:
        key = role.identity_key
        if key in seen:
            continue
        seen.add(key)
        out.append(role.with_grant(active.get(key)))
    return out


def build_catalog(
    entra_roles: Sequence[Role],
    azure_roles: Sequence[Role],
    active_entra: GrantMap,
    active_azure: GrantMap,
) -> list[Role]:
    """
    Merge both eligibility listings into one ordered catalog.

    Entra roles come first, then Azure roles, each in the order the backend
    returned them. Each role is matched only against its own backend's grants.
    """
    return _merge_backend(entra_roles, active_entra) + _merge_backend(azure_roles, active_azure)


@dataclass
class DiscoveryResult:
    catalog: list[Role]
    eligible_counts: dict[str, int] = field(default_factory=dict)
    active_counts: dict[str, int] = field(default_factory=dict)
    errors: list[dict] = field(default_factory=list)


def discover(
    backends: Sequence[RoleBackend],
    principal_id: str,
    *,
    tqdm_factory: Optional[Callable] = None,
) -> DiscoveryResult:
    """
    Query every backend (one worker each) and build the session catalog.

    The backends are independent so they run in parallel; the merge itself is
    ordered by backend name, not by completion order.
    """
    eligible: dict[str, list[Role]] = {b: [] for b in BACKENDS}
    active: dict[str, GrantMap] = {b: {} for b in BACKENDS}
    progress = StageProgress(
        tasks=[b.name for b in backends],
        stages=DISCOVERY_STAGES,
        desc="Discovering roles",
        tqdm_factory=tqdm_factory,
    )

    def worker(backend: RoleBackend) -> tuple[str, list[Role], GrantMap]:
        cb = progress.make_callback(backend.name)
        try:
            cb("eligible")
            roles = backend.list_eligible(principal_id)
            cb("active")
            grants = backend.list_active(principal_id) if roles else {}
            return backend.name, roles, grants
        finally:
            progress.finish(backend.name)

    try:
        with ThreadPoolExecutor(max_workers=max(1, len(backends))) as ex:
            futs = [ex.submit(worker, b) for b in backends]
            for fut in as_completed(futs):
                name, roles, grants = fut.result()
                eligible[name] = roles
                active[name] = grants
    finally:
        progress.close()

    catalog = build_catalog(eligible[BACKENDS[0]], eligible[BACKENDS[1]], active[BACKENDS[0]], active[BACKENDS[1]])
    errors: list[dict] = []
    for b in backends:
        errors.extend(b.errors)
    return DiscoveryResult(
        catalog=catalog,
        eligible_counts={name: len(roles) for name, roles in eligible.items()},
        active_counts={name: len(grants) for name, grants in active.items()},
        errors=errors,
    )
