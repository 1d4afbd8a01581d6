from __future__ import annotations

import argparse
import signal
import sys
import threading
from typing import Optional

import requests
from tqdm import tqdm

from bluepim import console
from bluepim.auth import ARM_SCOPE, AUTH_METHODS, GRAPH_SCOPE, BearerTokenProvider, build_credential, resolve_principal
from bluepim.backends import AzureRoleBackend, EntraRoleBackend, RoleBackend
from bluepim.catalog import discover
from bluepim.config import (
    DEFAULT_DURATION_HOURS,
    DEFAULT_JUSTIFICATION,
    DEFAULT_PACING_SECONDS,
    DEFAULT_SETTLE_SECONDS,
    SessionConfig,
)
from bluepim.errors import FatalSessionError, SelectionError
from bluepim.models import ACTIONS, BACKEND_AZURE, BACKEND_ENTRA
from bluepim.orchestrator import TransitionOrchestrator
from bluepim.render import print_catalog, print_invalid_tokens, print_tally
from bluepim.report import atomic_write_json, build_report
from bluepim.scope import SubscriptionNameCache
from bluepim.selection import resolve_selection


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="List, activate, deactivate or re-activate your eligible Entra ID and Azure RBAC roles (PIM). Uses Microsoft Graph and ARM directly, not the `az` CLI."
    )
    ap.add_argument("--action", choices=ACTIONS, help="Transition to apply to the selected roles. Omit to only list roles.")
    ap.add_argument("--list", action="store_true", help="Only list eligible roles and their activation state.")
    ap.add_argument(
        "--roles",
        help="Roles to act on: comma-separated indices from the listing (e.g. 1,3), or ALL, ACTIVE, INACTIVE.",
    )
    ap.add_argument("--justification", help=f"Justification for activations (default: '{DEFAULT_JUSTIFICATION}').")
    ap.add_argument("--duration-hours", type=int, default=DEFAULT_DURATION_HOURS, help=f"Activation duration in hours (default: {DEFAULT_DURATION_HOURS}).")
    ap.add_argument("--pacing-seconds", type=float, default=DEFAULT_PACING_SECONDS, help=f"Delay between backend calls (default: {DEFAULT_PACING_SECONDS:g}).")
    ap.add_argument(
        "--settle-seconds",
        type=float,
        default=DEFAULT_SETTLE_SECONDS,
        help=f"Delay between the deactivate and activate phases of --action reactivate (default: {DEFAULT_SETTLE_SECONDS:g}).",
    )
    ap.add_argument("--no-entra", action="store_true", help="Skip Entra ID directory roles (Microsoft Graph).")
    ap.add_argument("--no-azure", action="store_true", help="Skip Azure RBAC roles (ARM).")
    ap.add_argument("--no-progress", action="store_true", help="Disable the discovery progress bar.")

    # Auth (no az CLI).
    ap.add_argument("--auth-method", default="auto", help=f"Authentication method: {', '.join(AUTH_METHODS)} (default: auto).")
    ap.add_argument("--tenant-id", help="Tenant ID (required for client-secret auth; optional for device-code).")
    ap.add_argument("--client-id", help="Service principal (app) client ID for client-secret auth.")
    ap.add_argument("--client-secret", help="Service principal client secret for client-secret auth.")
    ap.add_argument("--arm-token", help="Azure Resource Manager access token (Bearer). If provided, bypasses other auth methods.")
    ap.add_argument("--graph-token", help="Microsoft Graph access token (Bearer). Needed for Entra roles when static tokens are used.")
    ap.add_argument("--device-client-id", help="Public client ID for device-code auth (default: Azure CLI public app id).")
    ap.add_argument(
        "--no-az-token-cache",
        action="store_true",
        help="Do not read tokens from ~/.azure/msal_token_cache.json; force device-code/client-secret auth.",
    )

    ap.add_argument("--out-json", help="Write the catalog and results to this path (stdout stays human-readable).")
    return ap


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def signal_handler(signum, frame):
        if stop_event.is_set():
            raise KeyboardInterrupt
        print()
        console.warn("Interrupt received. Finishing the current request, then stopping...")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def build_backends(config: SessionConfig, credential, *, session: Optional[requests.Session] = None) -> list[RoleBackend]:
    session = session or requests.Session()
    backends: list[RoleBackend] = []
    if config.include_entra:
        backends.append(
            EntraRoleBackend(
                credential,
                session=session,
                timeout=config.http_timeout,
                tokens=BearerTokenProvider(credential, GRAPH_SCOPE, backend=BACKEND_ENTRA),
            )
        )
    if config.include_azure:
        backends.append(
            AzureRoleBackend(
                credential,
                session=session,
                timeout=config.http_timeout,
                scope_names=SubscriptionNameCache(credential),
                tokens=BearerTokenProvider(credential, ARM_SCOPE, backend=BACKEND_AZURE),
            )
        )
    return backends


def main(argv: Optional[list[str]] = None) -> None:
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.action and not args.roles:
        ap.error("--roles is required with --action")

    try:
        config = SessionConfig.from_args(args)
    except ValueError as e:
        console.error(f"Error: {e}")
        sys.exit(2)

    try:
        credential = build_credential(config)
    except Exception as e:
        console.error(f"Azure authentication failed: {e}")
        sys.exit(1)

    backends = build_backends(config, credential)
    try:
        principal = resolve_principal([b.tokens for b in backends])
    except FatalSessionError as e:
        console.error(str(e))
        sys.exit(1)
    console.info(f"Signed in as {principal.get('upn') or principal['oid']} (oid {principal['oid']})")

    discovery = discover(backends, principal["oid"], tqdm_factory=None if args.no_progress else tqdm)
    if not any(b.available for b in backends):
        console.error("Could not authenticate to any role backend; nothing to do.")
        sys.exit(1)

    catalog = discovery.catalog
    print_catalog(catalog)

    result = None
    invalid: list[tuple[str, str]] = []
    exit_code = 0
    if args.action and not args.list:
        selection = resolve_selection(args.roles, catalog)
        invalid = selection.invalid
        print_invalid_tokens(selection)
        try:
            roles = selection.require_roles()
        except SelectionError as e:
            console.error(str(e))
            _write_report(args.out_json, principal, catalog, None, invalid, discovery.errors)
            sys.exit(2)
        if not roles:
            console.info(f"No {selection.keyword} roles to {args.action}.")
        else:
            stop_event = threading.Event()
            _install_signal_handlers(stop_event)
            orchestrator = TransitionOrchestrator(
                {b.name: b for b in backends},
                justification=config.justification,
                duration_hours=config.duration_hours,
                pacing_seconds=config.pacing_seconds,
                settle_seconds=config.settle_seconds,
                stop_event=stop_event,
            )
            result = orchestrator.run(args.action, roles)
            print()
            print_tally(result)
            if result.failure_count or result.cancelled:
                exit_code = 1

    _write_report(args.out_json, principal, catalog, result, invalid, discovery.errors)
    if exit_code:
        sys.exit(exit_code)


def _write_report(path, principal, catalog, result, invalid, errors) -> None:
    if not path:
        return
    report = build_report(principal=principal, catalog=catalog, result=result, invalid_selection=invalid, errors=errors)
    atomic_write_json(path, report)
    console.ok(f"Report written to {path}")


if __name__ == "__main__":
    main()
