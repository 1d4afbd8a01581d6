from __future__ import annotations

from datetime import datetime, timezone

from bluepim.backends.azure import AzureRoleBackend
from bluepim.models import BACKEND_AZURE, SCOPE_RESOURCE_GROUP, SCOPE_SUBSCRIPTION, identity_key

from .helpers.fakes import FakeCredential, FakeResponse, FakeSession, make_role

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
READER = "/subscriptions/sub1/providers/Microsoft.Authorization/roleDefinitions/acdd72a7"
OWNER = "/subscriptions/sub1/providers/Microsoft.Authorization/roleDefinitions/8e3af657"


def _backend(session, **kwargs):
    return AzureRoleBackend(
        FakeCredential("arm-token"),
        session=session,
        now=lambda: NOW,
        name_factory=lambda: "req-guid",
        **kwargs,
    )


def _eligible(rdid, scope, display=None):
    props = {"roleDefinitionId": rdid, "scope": scope, "principalId": "user-oid"}
    if display:
        props["expandedProperties"] = {"roleDefinition": {"id": rdid, "displayName": display}}
    return {"id": f"{scope}/elig", "properties": props}


def test_list_eligible_resolves_missing_names_once_per_definition():
    session = FakeSession()
    session.add(
        "GET",
        "roleEligibilityScheduleInstances",
        FakeResponse(
            200,
            {
                "value": [
                    _eligible(READER, "/subscriptions/sub1", "Reader"),
                    _eligible(OWNER, "/subscriptions/sub1/resourceGroups/rg1"),
                    _eligible(OWNER, "/subscriptions/sub1/resourceGroups/rg2"),
                ]
            },
        ),
    )
    session.add("GET", "roleDefinitions/8e3af657", FakeResponse(200, {"properties": {"roleName": "Owner"}}))

    roles = _backend(session, scope_names=lambda sid: "Production").list_eligible("user-oid")

    assert [(r.display_name, r.scope_class, r.scope_display_name) for r in roles] == [
        ("Reader", SCOPE_SUBSCRIPTION, "Sub: Production"),
        ("Owner", SCOPE_RESOURCE_GROUP, "RG: rg1"),
        ("Owner", SCOPE_RESOURCE_GROUP, "RG: rg2"),
    ]
    assert all(r.backend == BACKEND_AZURE for r in roles)
    lookups = [c for c in session.calls if "roleDefinitions/8e3af657" in c["url"]]
    assert len(lookups) == 1
    assert lookups[0]["params"] == {"api-version": "2022-04-01"}
    assert session.calls[0]["params"] == {"api-version": "2020-10-01", "$filter": "asTarget()"}


def test_failed_name_lookup_is_cached_as_fallback_label():
    session = FakeSession()
    session.add(
        "GET",
        "roleEligibilityScheduleInstances",
        FakeResponse(200, {"value": [_eligible(OWNER, "/subscriptions/sub1"), _eligible(OWNER, "/subscriptions/sub2")]}),
    )
    session.add("GET", "roleDefinitions/8e3af657", FakeResponse(403, {"error": {"code": "AuthorizationFailed", "message": "denied"}}))
    backend = _backend(session, scope_names=lambda sid: None)
    roles = backend.list_eligible("user-oid")
    assert [r.display_name for r in roles] == ["8e3af657", "8e3af657"]
    assert len([c for c in session.calls if "roleDefinitions/8e3af657" in c["url"]]) == 1
    assert len(backend.errors) == 1


def test_list_active_follows_next_link_and_keeps_activated():
    session = FakeSession()
    session.add(
        "GET",
        "roleAssignmentScheduleInstances",
        FakeResponse(
            200,
            {
                "value": [
                    {
                        "id": "/subscriptions/sub1/providers/Microsoft.Authorization/roleAssignmentScheduleInstances/i1",
                        "properties": {
                            "roleDefinitionId": READER,
                            "scope": "/subscriptions/sub1",
                            "assignmentType": "Activated",
                            "startDateTime": "2026-03-01T08:00:00Z",
                            "endDateTime": "2026-03-01T16:00:00Z",
                        },
                    }
                ],
                "nextLink": "https://management.azure.com/providers/Microsoft.Authorization/roleAssignmentScheduleInstances?$skiptoken=p2",
            },
        ),
        FakeResponse(
            200,
            {"value": [{"id": "i2", "properties": {"roleDefinitionId": OWNER, "scope": "/subscriptions/sub1", "assignmentType": "Assigned"}}]},
        ),
    )
    grants = _backend(session).list_active("user-oid")
    assert list(grants) == [identity_key(READER, "/subscriptions/sub1")]
    assert session.calls[1]["url"].endswith("$skiptoken=p2")
    assert session.calls[1]["params"] is None


def test_activation_is_a_named_put_on_the_role_scope():
    session = FakeSession().add("PUT", "roleAssignmentScheduleRequests", FakeResponse(201, {"name": "req-guid"}))
    role = make_role("Reader", backend=BACKEND_AZURE, role_definition_id=READER, scope_id="/subscriptions/sub1/resourceGroups/rg1")
    res = _backend(session).request_activation(role, "deploy", 4)
    assert res.ok is True
    call = session.calls[0]
    assert call["url"] == (
        "https://management.azure.com/subscriptions/sub1/resourceGroups/rg1"
        "/providers/Microsoft.Authorization/roleAssignmentScheduleRequests/req-guid"
    )
    assert call["params"] == {"api-version": "2020-10-01"}
    assert call["json"] == {
        "properties": {
            "principalId": "user-oid",
            "roleDefinitionId": READER,
            "requestType": "SelfActivate",
            "justification": "deploy",
            "scheduleInfo": {
                "startDateTime": "2026-03-01T09:30:00Z",
                "expiration": {"type": "AfterDuration", "duration": "PT4H"},
            },
        }
    }


def test_activation_conflict_is_idempotent():
    session = FakeSession().add(
        "PUT",
        "roleAssignmentScheduleRequests",
        FakeResponse(409, {"error": {"code": "RoleAssignmentExists", "message": "The Role assignment already exists."}}),
    )
    res = _backend(session).request_activation(make_role("Reader", backend=BACKEND_AZURE), "x", 8)
    assert res.ok is True and res.idempotent is True


def test_deactivation_not_found_message_is_idempotent():
    session = FakeSession().add(
        "PUT",
        "roleAssignmentScheduleRequests",
        FakeResponse(400, {"error": {"message": "The role assignment was not found."}}),
    )
    role = make_role("Reader", backend=BACKEND_AZURE, active=True)
    res = _backend(session).request_deactivation(role)
    assert res.ok is True and res.idempotent is True
    assert session.calls[0]["json"]["properties"]["requestType"] == "SelfDeactivate"
    assert "justification" not in session.calls[0]["json"]["properties"]


def test_deactivation_rejection_is_reported():
    session = FakeSession().add(
        "PUT",
        "roleAssignmentScheduleRequests",
        FakeResponse(400, {"error": {"code": "ActiveDurationTooShort", "message": "Minimum active duration is 5 minutes."}}),
    )
    res = _backend(session).request_deactivation(make_role("Reader", backend=BACKEND_AZURE, active=True))
    assert res.ok is False
    assert "ActiveDurationTooShort" in res.message


def test_non_json_error_body_uses_text():
    session = FakeSession().add("PUT", "roleAssignmentScheduleRequests", FakeResponse(502, None, text="Bad Gateway"))
    res = _backend(session).request_activation(make_role("Reader", backend=BACKEND_AZURE), "x", 8)
    assert res.ok is False
    assert "Bad Gateway" in res.message
