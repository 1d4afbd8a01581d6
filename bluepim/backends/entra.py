from __future__ import annotations

from typing import Any, Optional

import requests

from bluepim.auth import GRAPH_SCOPE
from bluepim.backends.base import RoleBackend
from bluepim.models import ActiveGrant, BACKEND_ENTRA, Role
from bluepim.scope import resolve_scope


GRAPH_BASE = "https://graph.microsoft.com/v1.0"
ROLE_MANAGEMENT = f"{GRAPH_BASE}/roleManagement/directory"


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


class EntraRoleBackend(RoleBackend):
    """Entra ID directory roles through the Microsoft Graph PIM endpoints."""

    name = BACKEND_ENTRA
    token_scope = GRAPH_SCOPE
    expiration_type = "afterDuration"

    def _list_eligible(self, principal_id: str) -> list[Role]:
        records = self._get_paged(
            f"{ROLE_MANAGEMENT}/roleEligibilityScheduleInstances",
            {"$filter": f"principalId eq '{_odata_quote(principal_id)}'", "$expand": "roleDefinition"},
            "@odata.nextLink",
        )
        roles: list[Role] = []
        for rec in records:
            role = self._role_from(rec, principal_id)
            if role is not None:
                roles.append(role)
        return roles

    def _role_from(self, rec: dict[str, Any], principal_id: str) -> Optional[Role]:
        rdid = rec.get("roleDefinitionId")
        if not isinstance(rdid, str) or not rdid.strip():
            return None
        scope_id = rec.get("directoryScopeId") or "/"
        role_def = rec.get("roleDefinition")
        name = role_def.get("displayName") if isinstance(role_def, dict) else None
        scope_class, scope_name = resolve_scope(scope_id)
        return Role(
            display_name=name or rdid,
            role_definition_id=rdid,
            principal_id=principal_id,
            scope_id=scope_id,
            scope_display_name=scope_name,
            scope_class=scope_class,
            backend=self.name,
        )

    def _list_active(self, principal_id: str) -> list[ActiveGrant]:
        records = self._get_paged(
            f"{ROLE_MANAGEMENT}/roleAssignmentScheduleInstances",
            {"$filter": f"principalId eq '{_odata_quote(principal_id)}'"},
            "@odata.nextLink",
        )
        grants: list[ActiveGrant] = []
        for rec in records:
            # Permanent ("Assigned") assignments are not activations.
            if (rec.get("assignmentType") or "").lower() != "activated":
                continue
            g = self._grant_from(
                rec.get("roleDefinitionId"),
                rec.get("directoryScopeId") or "/",
                rec.get("id"),
                rec.get("startDateTime"),
                rec.get("endDateTime"),
            )
            if g is not None:
                grants.append(g)
        return grants

    def _submit(self, body: dict[str, Any]) -> requests.Response:
        return self._send("POST", f"{ROLE_MANAGEMENT}/roleAssignmentScheduleRequests", body=body)

    def _submit_activation(self, role: Role, justification: str, duration_hours: int) -> requests.Response:
        return self._submit(
            {
                "action": "selfActivate",
                "principalId": role.principal_id,
                "roleDefinitionId": role.role_definition_id,
                "directoryScopeId": role.scope_id,
                "justification": justification,
                "scheduleInfo": self._schedule(duration_hours),
            }
        )

    def _submit_deactivation(self, role: Role) -> requests.Response:
        return self._submit(
            {
                "action": "selfDeactivate",
                "principalId": role.principal_id,
                "roleDefinitionId": role.role_definition_id,
                "directoryScopeId": role.scope_id,
            }
        )
