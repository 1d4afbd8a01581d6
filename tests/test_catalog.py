from __future__ import annotations

from bluepim.catalog import build_catalog, discover
from bluepim.models import BACKEND_AZURE, BACKEND_ENTRA, identity_key

from .helpers.fakes import make_grant, make_role


def test_entra_roles_come_first_in_native_order():
    entra = [make_role("Global Reader"), make_role("User Administrator")]
    azure = [make_role("Reader", backend=BACKEND_AZURE), make_role("Contributor", backend=BACKEND_AZURE)]
    catalog = build_catalog(entra, azure, {}, {})
    assert [r.display_name for r in catalog] == ["Global Reader", "User Administrator", "Reader", "Contributor"]


def test_active_state_is_stamped_from_matching_grant():
    role = make_role("Reader", backend=BACKEND_AZURE, role_definition_id="/subscriptions/S/providers/Microsoft.Authorization/roleDefinitions/R")
    # ARM returns different casing in the assignment listing.
    grant = make_grant("/SUBSCRIPTIONS/s/providers/microsoft.authorization/roleDefinitions/r", "/subscriptions/SUB1/", assignment_id="a-1")
    catalog = build_catalog([], [role], {}, {grant.key: grant})
    merged = catalog[0]
    assert merged.is_active is True
    assert merged.active_assignment_id == "a-1"
    assert merged.expires_at == grant.expires_at


def test_grants_never_cross_backends():
    entra_role = make_role("Shared", role_definition_id="same", scope_id="/")
    azure_grant = make_grant("same", "/")
    catalog = build_catalog([entra_role], [], {}, {azure_grant.key: azure_grant})
    assert catalog[0].is_active is False


def test_active_fields_are_set_together():
    entra = [make_role("A"), make_role("B")]
    grant = make_grant("def-A", "/")
    for role in build_catalog(entra, [], {grant.key: grant}, {}):
        assert role.is_active == (role.active_assignment_id is not None) == (role.expires_at is not None)


def test_duplicate_eligibility_records_are_merged():
    entra = [make_role("A"), make_role("A"), make_role("B")]
    catalog = build_catalog(entra, [], {}, {})
    keys = [r.identity_key for r in catalog]
    assert len(keys) == len(set(keys)) == 2


def test_same_key_in_both_backends_is_kept_twice():
    entra = [make_role("A", role_definition_id="x", scope_id="/")]
    azure = [make_role("A", backend=BACKEND_AZURE, role_definition_id="x", scope_id="/")]
    assert len(build_catalog(entra, azure, {}, {})) == 2


class _ListingBackend:
    def __init__(self, name, roles, grants, errors=None):
        self.name = name
        self._roles = roles
        self._grants = grants
        self.errors = errors or []
        self.listed = []

    def list_eligible(self, principal_id):
        self.listed.append(("eligible", principal_id))
        return self._roles

    def list_active(self, principal_id):
        self.listed.append(("active", principal_id))
        return self._grants


def test_discover_merges_both_backends_in_fixed_order():
    grant = make_grant("def-Reader", "/subscriptions/sub1")
    azure = _ListingBackend(
        BACKEND_AZURE,
        [make_role("Reader", backend=BACKEND_AZURE)],
        {grant.key: grant},
        errors=[{"backend": BACKEND_AZURE, "where": "x", "error": "y"}],
    )
    entra = _ListingBackend(BACKEND_ENTRA, [make_role("Global Reader")], {})
    result = discover([azure, entra], "user-oid")
    assert [r.display_name for r in result.catalog] == ["Global Reader", "Reader"]
    assert result.catalog[1].is_active is True
    assert result.eligible_counts == {BACKEND_ENTRA: 1, BACKEND_AZURE: 1}
    assert result.errors == [{"backend": BACKEND_AZURE, "where": "x", "error": "y"}]
    assert entra.listed == [("eligible", "user-oid"), ("active", "user-oid")]


def test_discover_skips_active_listing_without_eligible_roles():
    entra = _ListingBackend(BACKEND_ENTRA, [], {identity_key("a", "/"): make_grant("a", "/")})
    result = discover([entra], "user-oid")
    assert result.catalog == []
    assert entra.listed == [("eligible", "user-oid")]
