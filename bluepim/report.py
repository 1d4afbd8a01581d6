from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from bluepim.models import Role, TransitionResult


SCHEMA_VERSION = 1
TOOL_NAME = "Blue Azure PIM"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def atomic_write_json(path: str, obj: Any) -> None:
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=False, default=str)
        f.write("\n")
    os.replace(tmp_path, path)


def build_report(
    *,
    principal: dict[str, Any],
    catalog: Sequence[Role],
    result: Optional[TransitionResult] = None,
    invalid_selection: Optional[list[tuple[str, str]]] = None,
    errors: Optional[list[dict]] = None,
) -> dict:
    errors = errors or []
    summary: dict[str, Any] = {
        "eligible_roles": len(catalog),
        "active_roles": sum(1 for r in catalog if r.is_active),
        "errors": len(errors),
    }
    if result is not None:
        summary.update(
            {
                "action": result.action,
                "success_count": result.success_count,
                "failure_count": result.failure_count,
                "cancelled": result.cancelled,
            }
        )

    report: dict[str, Any] = {
        "tool": TOOL_NAME,
        "schema_version": SCHEMA_VERSION,
        "generated_at": utc_now_iso(),
        "principal": principal,
        "catalog": [dict(r.to_dict(), index=i) for i, r in enumerate(catalog, start=1)],
        "summary": summary,
    }
    if result is not None:
        report["outcomes"] = [o.to_dict() for o in result.outcomes]
    if invalid_selection:
        report["invalid_selection"] = [{"token": t, "reason": why} for t, why in invalid_selection]
    if errors:
        report["errors"] = errors
    return report
