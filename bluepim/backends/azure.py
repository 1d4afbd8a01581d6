from __future__ import annotations

import uuid
from typing import Any, Callable, Optional

import requests

from bluepim.auth import ARM_SCOPE
from bluepim.backends.base import RoleBackend
from bluepim.errors import AuthenticationError, TransportError
from bluepim.models import ActiveGrant, BACKEND_AZURE, Role
from bluepim.scope import resolve_scope


ARM_BASE = "https://management.azure.com"
PIM_API_VERSION = "2020-10-01"
AUTHZ_API_VERSION = "2022-04-01"


def _props(rec: dict[str, Any]) -> dict[str, Any]:
    props = rec.get("properties")
    return props if isinstance(props, dict) else {}


def _expanded_role_name(props: dict[str, Any]) -> Optional[str]:
    expanded = props.get("expandedProperties")
    if not isinstance(expanded, dict):
        return None
    role_def = expanded.get("roleDefinition")
    if not isinstance(role_def, dict):
        return None
    name = role_def.get("displayName")
    return name if isinstance(name, str) and name.strip() else None


class AzureRoleBackend(RoleBackend):
    """Azure RBAC roles through the ARM PIM (roleEligibilitySchedule*) endpoints."""

    name = BACKEND_AZURE
    token_scope = ARM_SCOPE

    def __init__(self, credential: Any, *, name_factory: Optional[Callable[[], str]] = None, **kwargs: Any) -> None:
        super().__init__(credential, **kwargs)
        self._name_factory = name_factory or (lambda: str(uuid.uuid4()))

    def _list_eligible(self, principal_id: str) -> list[Role]:
        records = self._get_paged(
            f"{ARM_BASE}/providers/Microsoft.Authorization/roleEligibilityScheduleInstances",
            {"api-version": PIM_API_VERSION, "$filter": "asTarget()"},
            "nextLink",
        )
        # Role definitions don't change within a session; look each up once per call.
        names: dict[str, str] = {}
        roles: list[Role] = []
        for rec in records:
            props = _props(rec)
            rdid = props.get("roleDefinitionId")
            scope_id = props.get("scope")
            if not isinstance(rdid, str) or not rdid.strip() or not isinstance(scope_id, str) or not scope_id.strip():
                continue
            display = _expanded_role_name(props) or self._role_name(rdid, names)
            scope_class, scope_name = resolve_scope(scope_id, self.scope_names)
            roles.append(
                Role(
                    display_name=display,
                    role_definition_id=rdid,
                    principal_id=principal_id,
                    scope_id=scope_id,
                    scope_display_name=scope_name,
                    scope_class=scope_class,
                    backend=self.name,
                )
            )
        return roles

    def _role_name(self, role_definition_id: str, cache: dict[str, str]) -> str:
        key = role_definition_id.lower()
        if key in cache:
            return cache[key]
        fallback = role_definition_id.rstrip("/").rsplit("/", 1)[-1]
        try:
            data = self._get_json(f"{ARM_BASE}{role_definition_id}", {"api-version": AUTHZ_API_VERSION})
            name = _props(data).get("roleName") or fallback
        except AuthenticationError:
            raise
        except TransportError as e:
            self.fail(f"role definition lookup {role_definition_id}", e)
            name = fallback
        cache[key] = name
        return name

    def _list_active(self, principal_id: str) -> list[ActiveGrant]:
        records = self._get_paged(
            f"{ARM_BASE}/providers/Microsoft.Authorization/roleAssignmentScheduleInstances",
            {"api-version": PIM_API_VERSION, "$filter": "asTarget()"},
            "nextLink",
        )
        grants: list[ActiveGrant] = []
        for rec in records:
            props = _props(rec)
            if (props.get("assignmentType") or "").lower() != "activated":
                continue
            g = self._grant_from(
                props.get("roleDefinitionId"),
                props.get("scope"),
                rec.get("id") or rec.get("name"),
                props.get("startDateTime"),
                props.get("endDateTime"),
            )
            if g is not None:
                grants.append(g)
        return grants

    def _submit(self, role: Role, properties: dict[str, Any]) -> requests.Response:
        scope = role.scope_id.rstrip("/")
        url = f"{ARM_BASE}{scope}/providers/Microsoft.Authorization/roleAssignmentScheduleRequests/{self._name_factory()}"
        body = {
            "properties": {
                "principalId": role.principal_id,
                "roleDefinitionId": role.role_definition_id,
                **properties,
            }
        }
        return self._send("PUT", url, params={"api-version": PIM_API_VERSION}, body=body)

    def _submit_activation(self, role: Role, justification: str, duration_hours: int) -> requests.Response:
        return self._submit(
            role,
            {
                "requestType": "SelfActivate",
                "justification": justification,
                "scheduleInfo": self._schedule(duration_hours),
            },
        )

    def _submit_deactivation(self, role: Role) -> requests.Response:
        return self._submit(role, {"requestType": "SelfDeactivate"})
