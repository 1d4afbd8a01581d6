from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from termcolor import colored

from bluepim.models import (
    BACKEND_LABELS,
    OUTCOME_ALREADY_ACTIVE,
    OUTCOME_ALREADY_INACTIVE,
    OUTCOME_CANCELLED,
    OUTCOME_FAILED,
    Role,
    TransitionResult,
)
from bluepim.selection import Selection


OUTCOME_COLORS = {
    OUTCOME_FAILED: "red",
    OUTCOME_CANCELLED: "yellow",
    OUTCOME_ALREADY_ACTIVE: "cyan",
    OUTCOME_ALREADY_INACTIVE: "cyan",
}


def _print_section(title: str) -> None:
    print(colored(title, "yellow", attrs=["bold"]) + ":")


def _print_kv(key: str, value: str) -> None:
    print(f"{colored(key + ':', 'white')} {value}")


def format_remaining(expires_at: Optional[datetime], now: Optional[datetime] = None) -> str:
    if expires_at is None:
        return ""
    now = now or datetime.now(timezone.utc)
    secs = int((expires_at - now).total_seconds())
    if secs <= 0:
        return "expired"
    hours, rem = divmod(secs, 3600)
    return f"{hours}h{rem // 60:02d}m left"


def role_status(role: Role, now: Optional[datetime] = None) -> str:
    if not role.is_active:
        return colored("inactive", "white")
    until = role.expires_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC") if role.expires_at else "?"
    return colored("ACTIVE", "green", attrs=["bold"]) + f" until {until} ({format_remaining(role.expires_at, now)})"


def print_catalog(catalog: Sequence[Role], *, now: Optional[datetime] = None) -> None:
    _print_section("Eligible roles")
    if not catalog:
        print("  - (none)")
        print()
        return
    width = len(str(len(catalog)))
    for i, role in enumerate(catalog, start=1):
        backend = BACKEND_LABELS.get(role.backend, role.backend)
        print(
            f"  {str(i).rjust(width)}. {colored(role.display_name, 'blue')} "
            f"[{backend}] scope=`{role.scope_display_name}` {role_status(role, now)}"
        )
    print()
    active = sum(1 for r in catalog if r.is_active)
    _print_kv("Total eligible roles", str(len(catalog)))
    _print_kv("Currently active", str(active))
    print()


def print_invalid_tokens(selection: Selection) -> None:
    for token, reason in selection.invalid:
        shown = token if token else "(empty)"
        print(f"{colored('[-] ', 'yellow')}Ignoring selection `{shown}`: {reason}")


def print_tally(result: TransitionResult) -> None:
    _print_section(f"Results ({result.action})")
    for o in result.outcomes:
        color = OUTCOME_COLORS.get(o.outcome, "green")
        line = f"  - {colored(o.outcome, color)}: `{o.role.display_name}` scope=`{o.role.scope_display_name}` [{BACKEND_LABELS.get(o.role.backend, o.role.backend)}]"
        if o.reason:
            line += f" ({o.reason})"
        print(line)
    print()
    _print_kv("Succeeded", colored(str(result.success_count), "green"))
    _print_kv("Failed", colored(str(result.failure_count), "red" if result.failure_count else "white"))
    if result.cancelled:
        _print_kv("Cancelled", colored("yes", "yellow"))
    print()
