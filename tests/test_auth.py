from __future__ import annotations

from types import SimpleNamespace

import pytest

from bluepim.auth import (
    ARM_SCOPE,
    GRAPH_SCOPE,
    BearerTokenProvider,
    StaticTokenCredential,
    build_credential,
    jwt_claims,
    resolve_principal,
    token_text,
)
from bluepim.config import SessionConfig
from bluepim.errors import AuthenticationError, FatalSessionError

from .helpers.fakes import FakeCredential, FakeToken, make_jwt


class SecretValue:
    def __init__(self, value):
        self._value = value

    def get_secret_value(self):
        return self._value


@pytest.mark.parametrize(
    "raw",
    [
        "plain-token",
        b"plain-token",
        FakeToken("plain-token", 0),
        FakeToken(SecretValue("plain-token"), 0),
        SecretValue("plain-token"),
        {"access_token": "plain-token", "expires_in": 3600},
    ],
)
def test_token_text_normalizes_representations(raw):
    assert token_text(raw) == "plain-token"


def test_token_text_rejects_empty_tokens():
    with pytest.raises(ValueError):
        token_text(FakeToken("", 0))


class CountingCredential:
    def __init__(self, expires_on: int):
        self.expires_on = expires_on
        self.calls = []

    def get_token(self, *scopes, **kwargs):
        self.calls.append(scopes)
        return FakeToken(f"tok{len(self.calls)}", self.expires_on)


def test_provider_caches_until_close_to_expiry():
    now = [1_000.0]
    cred = CountingCredential(expires_on=1_000 + 3600)
    provider = BearerTokenProvider(cred, ARM_SCOPE, clock=lambda: now[0])

    assert provider.token() == "tok1"
    now[0] += 3000
    assert provider.token() == "tok1"
    now[0] += 400  # inside the refresh margin
    assert provider.token() == "tok2"
    assert cred.calls == [(ARM_SCOPE,), (ARM_SCOPE,)]


def test_provider_remembers_acquisition_failure():
    cred = FakeCredential(fail=RuntimeError("MFA required"))
    provider = BearerTokenProvider(cred, GRAPH_SCOPE, backend="entra")
    with pytest.raises(AuthenticationError) as first:
        provider.token()
    with pytest.raises(AuthenticationError):
        provider.headers()
    assert first.value.backend == "entra"
    assert provider.error is not None
    assert len(cred.calls) == 1


def test_static_credential_routes_by_scope():
    graph = make_jwt({"oid": "g", "exp": 2_000_000_000})
    cred = StaticTokenCredential(arm_token="arm", graph_token=graph)
    assert cred.get_token(GRAPH_SCOPE).token == graph
    assert cred.get_token(GRAPH_SCOPE).expires_on == 2_000_000_000
    assert cred.get_token(ARM_SCOPE).token == "arm"
    with pytest.raises(ValueError):
        StaticTokenCredential(arm_token="arm").get_token(GRAPH_SCOPE)


def test_jwt_claims_is_best_effort():
    assert jwt_claims(make_jwt({"oid": "abc"})) == {"oid": "abc"}
    assert jwt_claims("not-a-jwt") == {}
    assert jwt_claims("a.!!!.c") == {}


def test_resolve_principal_prefers_first_working_provider():
    failing = BearerTokenProvider(FakeCredential(fail=RuntimeError("no graph consent")), GRAPH_SCOPE)
    working = BearerTokenProvider(FakeCredential(make_jwt({"oid": "user-oid", "upn": "me@contoso.com", "tid": "t"})), ARM_SCOPE)
    assert resolve_principal([failing, working]) == {"oid": "user-oid", "upn": "me@contoso.com", "tid": "t"}


def test_resolve_principal_without_identity_is_fatal():
    providers = [
        BearerTokenProvider(FakeCredential(fail=RuntimeError("denied")), GRAPH_SCOPE),
        BearerTokenProvider(FakeCredential(make_jwt({"appid": "x"})), ARM_SCOPE),
    ]
    with pytest.raises(FatalSessionError) as exc:
        resolve_principal(providers)
    assert "denied" in str(exc.value)
    assert "no oid claim" in str(exc.value)


def test_build_credential_prefers_static_tokens():
    cfg = SessionConfig(arm_token="arm", client_id="c", tenant_id="t", client_secret="s")
    assert isinstance(build_credential(cfg), StaticTokenCredential)


def test_build_credential_validates_method():
    with pytest.raises(ValueError):
        build_credential(SessionConfig(auth_method="kerberos"))
    with pytest.raises(ValueError):
        build_credential(SessionConfig(auth_method="client-secret"))


def test_config_from_args_uses_environment_and_defaults():
    args = SimpleNamespace(justification="  ", duration_hours=None, pacing_seconds=0, no_azure=True)
    cfg = SessionConfig.from_args(args, env={"AZURE_TENANT_ID": "tenant", "AZURE_CLIENT_ID": "app"})
    assert cfg.tenant_id == "tenant"
    assert cfg.client_id == "app"
    assert cfg.justification == "Administrative work requirement"
    assert cfg.duration_hours == 8
    assert cfg.pacing_seconds == 0
    assert cfg.settle_seconds == 5
    assert (cfg.include_entra, cfg.include_azure) == (True, False)


def test_config_rejects_disabling_both_backends():
    with pytest.raises(ValueError):
        SessionConfig.from_args(SimpleNamespace(no_entra=True, no_azure=True), env={})
