from __future__ import annotations

import json

from bluepim.models import ACTION_ACTIVATE, OUTCOME_ACTIVATED, OUTCOME_FAILED, RoleOutcome, TransitionResult
from bluepim.report import atomic_write_json, build_report

from .helpers.fakes import make_role


def test_build_report_summarizes_catalog_and_outcomes():
    catalog = [make_role("A", active=True), make_role("B")]
    result = TransitionResult(action=ACTION_ACTIVATE)
    result.record(RoleOutcome(catalog[0], OUTCOME_ACTIVATED))
    result.record(RoleOutcome(catalog[1], OUTCOME_FAILED, "HTTP 403"))

    report = build_report(
        principal={"oid": "user-oid"},
        catalog=catalog,
        result=result,
        errors=[{"backend": "azure", "where": "list eligible roles", "error": "timeout"}],
    )
    assert report["summary"] == {
        "eligible_roles": 2,
        "active_roles": 1,
        "errors": 1,
        "action": "activate",
        "success_count": 1,
        "failure_count": 1,
        "cancelled": False,
    }
    assert [c["index"] for c in report["catalog"]] == [1, 2]
    assert report["outcomes"][1] == {"role": catalog[1].to_dict(), "outcome": OUTCOME_FAILED, "reason": "HTTP 403"}
    assert "invalid_selection" not in report


def test_atomic_write_json_replaces_file(tmp_path):
    path = tmp_path / "out.json"
    path.write_text("old")
    atomic_write_json(str(path), build_report(principal={"oid": "x"}, catalog=[make_role("A", active=True)]))
    data = json.loads(path.read_text())
    assert data["catalog"][0]["expires_at"].startswith("2026-01-01T20:00:00")
    assert not (tmp_path / "out.json.tmp").exists()
