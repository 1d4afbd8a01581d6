from __future__ import annotations

import base64
import json
import os
import threading
import time
from typing import Any, Callable, Optional

import msal
from azure.core.credentials import AccessToken
from azure.identity import ClientSecretCredential, DeviceCodeCredential

from bluepim.errors import AuthenticationError, FatalSessionError


AZURE_PUBLIC_CLIENT_ID = "04b07795-8ddb-461a-bbee-02f9e1bf7b46"  # Common public client (Azure CLI app id)
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
ARM_SCOPE = "https://management.azure.com/.default"
AUTH_METHODS = ("auto", "client-secret", "device-code", "az-cache")

# Refresh tokens this many seconds before they expire.
TOKEN_REFRESH_MARGIN = 300


class AzureMsalTokenCacheCredential:
    """
    Use the Azure CLI MSAL token cache (~/.azure/msal_token_cache.json) WITHOUT invoking `az`.
    Lets users reuse an existing `az login` session for both Graph and ARM.
    """

    def __init__(
        self,
        *,
        cache_path: Optional[str] = None,
        client_id: str = AZURE_PUBLIC_CLIENT_ID,
        authority: str = "https://login.microsoftonline.com/organizations",
    ) -> None:
        self._cache_path = cache_path or os.path.expanduser("~/.azure/msal_token_cache.json")
        self._client_id = client_id
        self._authority = authority
        self._cache = msal.SerializableTokenCache()
        self._app: Optional[msal.PublicClientApplication] = None
        self._loaded = False

    def _load(self) -> None:
        if self._loaded:
            return
        if not os.path.exists(self._cache_path):
            raise RuntimeError(f"Azure CLI token cache not found at {self._cache_path}")
        with open(self._cache_path, "r", encoding="utf-8") as f:
            self._cache.deserialize(f.read())
        self._app = msal.PublicClientApplication(
            client_id=self._client_id,
            authority=self._authority,
            token_cache=self._cache,
        )
        self._loaded = True

    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        self._load()
        assert self._app is not None
        accounts = self._app.get_accounts()
        if not accounts:
            raise RuntimeError("No accounts found in Azure CLI token cache. Run `az login` or use device-code/client-secret auth.")
        result = self._app.acquire_token_silent(list(scopes), account=accounts[0])
        if not result or "access_token" not in result:
            raise RuntimeError(f"Failed to acquire token silently from Azure CLI cache: {result}")
        expires_on = result.get("expires_on")
        if not expires_on and result.get("expires_in"):
            expires_on = int(time.time()) + int(result["expires_in"])
        return AccessToken(result["access_token"], int(expires_on or 0))


def _jwt_payload(token: str) -> dict[str, Any]:
    parts = token.split(".")
    if len(parts) < 2:
        return {}
    payload = parts[1]
    pad = "=" * (-len(payload) % 4)
    data = base64.urlsafe_b64decode(payload + pad)
    obj = json.loads(data.decode("utf-8", errors="ignore"))
    return obj if isinstance(obj, dict) else {}


def jwt_claims(token: str) -> dict[str, Any]:
    """
    Decode JWT claims WITHOUT verifying signature (best-effort).
    Used to read oid/upn/tid from access tokens.
    """
    try:
        return _jwt_payload(token)
    except Exception:
        return {}


def _jwt_exp(token: str) -> Optional[int]:
    exp = jwt_claims(token).get("exp")
    try:
        return int(exp) if exp is not None else None
    except (TypeError, ValueError):
        return None


class StaticTokenCredential:
    def __init__(self, *, arm_token: Optional[str] = None, graph_token: Optional[str] = None) -> None:
        self._arm_token = (arm_token or "").strip() or None
        self._graph_token = (graph_token or "").strip() or None

    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        if any("graph.microsoft.com" in s for s in scopes):
            if not self._graph_token:
                raise ValueError("Graph token is required for Entra roles. Provide --graph-token or use --no-entra.")
            token = self._graph_token
        else:
            if not self._arm_token:
                raise ValueError("ARM token is required for Azure roles. Provide --arm-token or use --no-azure.")
            token = self._arm_token
        exp = _jwt_exp(token) or int(time.time()) + 300
        return AccessToken(token, exp)


def token_text(raw: Any) -> str:
    """
    Normalize whatever a credential returned into a plain bearer string.

    Handles `AccessToken`/`AccessTokenInfo` (`.token`), secret wrappers exposing
    `get_secret_value()`, bytes, MSAL result dicts and plain strings.
    """
    value = raw
    if isinstance(value, dict):
        value = value.get("access_token") or value.get("accessToken") or value.get("token")
    elif hasattr(value, "token") and not isinstance(value, (str, bytes)):
        value = value.token
    if hasattr(value, "get_secret_value"):
        value = value.get_secret_value()
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode("utf-8")
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Credential returned an unusable token ({type(raw).__name__})")
    return value.strip()


def token_expiry(raw: Any, token: str) -> int:
    exp = getattr(raw, "expires_on", None)
    if exp is None and isinstance(raw, dict):
        exp = raw.get("expires_on")
    try:
        if exp:
            return int(exp)
    except (TypeError, ValueError):
        pass
    return _jwt_exp(token) or int(time.time()) + 300


class BearerTokenProvider:
    """
    One cached bearer token for one resource scope.

    The token is acquired on first use and refreshed when it is within
    TOKEN_REFRESH_MARGIN seconds of expiry. A failed acquisition raises
    AuthenticationError and is remembered: later calls fail fast with the
    same reason instead of re-prompting.
    """

    def __init__(
        self,
        credential: Any,
        scope: str,
        *,
        backend: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        refresh_margin: int = TOKEN_REFRESH_MARGIN,
    ) -> None:
        self._credential = credential
        self._scope = scope
        self._backend = backend
        self._clock = clock
        self._refresh_margin = refresh_margin
        self._token: Optional[str] = None
        self._expires_on = 0
        self._error: Optional[AuthenticationError] = None
        self._lock = threading.Lock()

    @property
    def error(self) -> Optional[AuthenticationError]:
        return self._error

    def token(self) -> str:
        with self._lock:
            if self._error is not None:
                raise self._error
            if self._token and self._clock() < self._expires_on - self._refresh_margin:
                return self._token
            try:
                raw = self._credential.get_token(self._scope)
                tok = token_text(raw)
            except Exception as e:
                self._error = AuthenticationError(f"Token acquisition for {self._scope} failed: {e}", backend=self._backend)
                raise self._error from e
            self._token = tok
            self._expires_on = token_expiry(raw, tok)
            return tok

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token()}", "Content-Type": "application/json"}


def build_credential(config: Any) -> Any:
    # Avoid `AzureCliCredential` to ensure we don't shell out to the `az` CLI.
    auth_method = (getattr(config, "auth_method", None) or "auto").strip().lower()
    if auth_method not in AUTH_METHODS:
        raise ValueError(f"Invalid --auth-method. Use one of: {', '.join(AUTH_METHODS)}")

    if config.arm_token or config.graph_token:
        return StaticTokenCredential(arm_token=config.arm_token, graph_token=config.graph_token)

    if config.client_id and config.tenant_id and config.client_secret and auth_method in ("auto", "client-secret"):
        return ClientSecretCredential(tenant_id=config.tenant_id, client_id=config.client_id, client_secret=config.client_secret)

    if auth_method == "client-secret":
        raise ValueError("client-secret auth selected but missing --tenant-id/--client-id/--client-secret (or env vars).")

    if auth_method in ("auto", "az-cache") and config.use_az_token_cache:
        try:
            cred = AzureMsalTokenCacheCredential()
            cred._load()
            return cred
        except Exception:
            if auth_method == "az-cache":
                raise

    if auth_method == "az-cache":
        raise ValueError("az-cache auth selected but no Azure CLI token cache was usable. Run `az login` or use another auth method.")

    tenant_id = config.tenant_id or "organizations"
    client_id = config.device_client_id or AZURE_PUBLIC_CLIENT_ID

    def prompt_callback(verification_uri, user_code, expires_on):
        print(f"To sign in, open {verification_uri} and enter the code {user_code}")

    return DeviceCodeCredential(tenant_id=tenant_id, client_id=client_id, prompt_callback=prompt_callback)


def resolve_principal(providers: list[BearerTokenProvider]) -> dict[str, Any]:
    """
    Read the caller's identity from the first token that can be acquired.

    Raises FatalSessionError when no provider yields a token with an object id.
    """
    errors: list[str] = []
    for provider in providers:
        try:
            claims = jwt_claims(provider.token())
        except AuthenticationError as e:
            errors.append(str(e))
            continue
        oid = claims.get("oid") or claims.get("http://schemas.microsoft.com/identity/claims/objectidentifier")
        if oid:
            return {
                "oid": oid,
                "upn": claims.get("upn") or claims.get("preferred_username") or claims.get("unique_name"),
                "tid": claims.get("tid"),
            }
        errors.append("access token carries no oid claim")
    detail = "; ".join(errors) if errors else "no backend enabled"
    raise FatalSessionError(f"Could not determine the signed-in principal: {detail}")
