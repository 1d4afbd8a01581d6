from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Optional


DEFAULT_JUSTIFICATION = "Administrative work requirement"
DEFAULT_DURATION_HOURS = 8
DEFAULT_PACING_SECONDS = 1.0
DEFAULT_SETTLE_SECONDS = 5.0
DEFAULT_HTTP_TIMEOUT = 60


@dataclass
class SessionConfig:
    """Everything one session needs to authenticate and talk to both backends."""

    auth_method: str = "auto"
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    device_client_id: Optional[str] = None
    arm_token: Optional[str] = None
    graph_token: Optional[str] = None
    use_az_token_cache: bool = True

    justification: str = DEFAULT_JUSTIFICATION
    duration_hours: int = DEFAULT_DURATION_HOURS
    pacing_seconds: float = DEFAULT_PACING_SECONDS
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    http_timeout: int = DEFAULT_HTTP_TIMEOUT

    include_entra: bool = True
    include_azure: bool = True

    def validate(self) -> None:
        if self.duration_hours < 1:
            raise ValueError("--duration-hours must be at least 1")
        if self.pacing_seconds < 0 or self.settle_seconds < 0:
            raise ValueError("--pacing-seconds and --settle-seconds cannot be negative")
        if not self.include_entra and not self.include_azure:
            raise ValueError("Both backends are disabled (--no-entra and --no-azure); nothing to do.")

    @classmethod
    def from_args(cls, args: Any, env: Optional[dict[str, str]] = None) -> "SessionConfig":
        env = os.environ if env is None else env
        justification = (getattr(args, "justification", None) or "").strip() or DEFAULT_JUSTIFICATION
        cfg = cls(
            auth_method=(getattr(args, "auth_method", None) or "auto").strip().lower(),
            tenant_id=getattr(args, "tenant_id", None) or env.get("AZURE_TENANT_ID"),
            client_id=getattr(args, "client_id", None) or env.get("AZURE_CLIENT_ID"),
            client_secret=getattr(args, "client_secret", None) or env.get("AZURE_CLIENT_SECRET"),
            device_client_id=getattr(args, "device_client_id", None),
            arm_token=getattr(args, "arm_token", None),
            graph_token=getattr(args, "graph_token", None),
            use_az_token_cache=not getattr(args, "no_az_token_cache", False),
            justification=justification,
            duration_hours=int(getattr(args, "duration_hours", None) or DEFAULT_DURATION_HOURS),
            pacing_seconds=float(_first_set(getattr(args, "pacing_seconds", None), DEFAULT_PACING_SECONDS)),
            settle_seconds=float(_first_set(getattr(args, "settle_seconds", None), DEFAULT_SETTLE_SECONDS)),
            http_timeout=int(getattr(args, "http_timeout", None) or DEFAULT_HTTP_TIMEOUT),
            include_entra=not getattr(args, "no_entra", False),
            include_azure=not getattr(args, "no_azure", False),
        )
        cfg.validate()
        return cfg


def _first_set(value: Any, default: Any) -> Any:
    return default if value is None else value
