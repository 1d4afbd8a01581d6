from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from bluepim.models import (
    SCOPE_CUSTOM,
    SCOPE_DIRECTORY,
    SCOPE_RESOURCE,
    SCOPE_RESOURCE_GROUP,
    SCOPE_SUBSCRIPTION,
)


NameLookup = Callable[[str], Optional[str]]


def _segments(scope_id: str) -> list[str]:
    return [s for s in scope_id.strip().split("/") if s]


def _index_of(segments: list[str], name: str, start: int = 0) -> int:
    for i in range(start, len(segments)):
        if segments[i].lower() == name:
            return i
    return -1


def resolve_scope(scope_id: Optional[str], name_lookup: Optional[NameLookup] = None) -> tuple[str, str]:
    """
    Classify a scope path and build a short label for it.

    Returns (scope_class, display_name). Never raises: anything ambiguous degrades
    to the raw scope string.
    """
    raw = scope_id if isinstance(scope_id, str) else ""
    try:
        segs = _segments(raw)
        sub_idx = _index_of(segs, "subscriptions")
        if sub_idx < 0:
            if not segs:
                return SCOPE_DIRECTORY, raw.strip() or "/"
            return SCOPE_CUSTOM, raw

        if sub_idx + 1 >= len(segs):
            return SCOPE_CUSTOM, raw
        subscription_id = segs[sub_idx + 1]

        prov_idx = _index_of(segs, "providers", sub_idx + 2)
        if prov_idx >= 0:
            # providers/<namespace>/<type>/<name>[/<type>/<name>...]
            if len(segs) - prov_idx >= 4:
                return SCOPE_RESOURCE, f"{segs[-2]}: {segs[-1]}"
            return SCOPE_CUSTOM, raw

        rg_idx = _index_of(segs, "resourcegroups", sub_idx + 2)
        if rg_idx >= 0:
            if rg_idx + 1 < len(segs):
                return SCOPE_RESOURCE_GROUP, f"RG: {segs[rg_idx + 1]}"
            return SCOPE_CUSTOM, raw

        if len(segs) > sub_idx + 2:
            return SCOPE_CUSTOM, raw

        name = None
        if name_lookup is not None:
            try:
                name = name_lookup(subscription_id)
            except Exception:
                name = None
        return SCOPE_SUBSCRIPTION, f"Sub: {name or subscription_id}"
    except Exception:
        return SCOPE_CUSTOM, raw


class SubscriptionNameCache:
    """
    Session-wide subscription id -> display name cache.

    Lookups go through `SubscriptionClient.subscriptions.get` and every outcome,
    including failures, is cached so each subscription is queried at most once.
    """

    def __init__(self, credential: Any = None, *, fetch: Optional[NameLookup] = None) -> None:
        self._credential = credential
        self._fetch = fetch
        self._client = None
        self._cache: dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def _fetch_from_arm(self, subscription_id: str) -> Optional[str]:
        if self._credential is None:
            return None
        if self._client is None:
            from azure.mgmt.resource import SubscriptionClient

            self._client = SubscriptionClient(self._credential)
        sub = self._client.subscriptions.get(subscription_id)
        return getattr(sub, "display_name", None)

    def lookup(self, subscription_id: str) -> Optional[str]:
        key = (subscription_id or "").strip().lower()
        if not key:
            return None
        with self._lock:
            if key in self._cache:
                return self._cache[key]
        try:
            name = (self._fetch or self._fetch_from_arm)(subscription_id)
        except Exception:
            name = None
        with self._lock:
            self._cache[key] = name
        return name

    __call__ = lookup
