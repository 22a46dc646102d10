"""
Preflight checks run before sync to catch common misconfigurations early.
"""

import logging

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from caldav_gcal_sync.models import ConfigError
from caldav_gcal_sync.models import FetchError
from caldav_gcal_sync.models import LinkQueryError
from caldav_gcal_sync.models import SourceAuthError
from caldav_gcal_sync.models import SourceNotFoundError

logger = logging.getLogger(__name__)

_OFFLINE_KEYWORDS = frozenset(
    {
        "offline",
        "network",
        "timed out",
        "unreachable",
        "name or service not known",
        "no route",
        "connection refused",
        "temporary failure",
        "max retries exceeded",
    }
)


def _source_hint(e: FetchError) -> str:
    if isinstance(e, SourceAuthError):
        return "Check caldav_username and the (app-specific) password, or the ics_url access rights"
    if isinstance(e, SourceNotFoundError):
        return "Run: caldav-gcal-sync calendars"
    if any(kw in str(e).lower() for kw in _OFFLINE_KEYWORDS):
        return "Calendar source appears offline; check caldav_url or ics_url and network access"
    return str(e)


def run_preflight_checks(synchronizer, console: Console) -> bool:
    """Return True if sync may proceed; print issues and return False otherwise."""
    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    # 1. Configuration + calendar source reachable
    try:
        synchronizer.connect()
    except ConfigError as e:
        logger.error("Configuration invalid: %s", e)
        issues.append(("Configuration", str(e), "Fix the config file or CLI options"))
        _print_issues(issues, console)
        return False
    except FetchError as e:
        logger.error("Calendar source unusable: %s", e)
        issues.append(("Calendar source", str(e), _source_hint(e)))
        _print_issues(issues, console)
        return False

    # 2. Google destination calendar accessible
    try:
        synchronizer.destination.test_connection()
    except LinkQueryError as e:
        logger.error("Google calendar unusable: %s", e)
        issues.append(
            (
                "Google calendar",
                str(e),
                "Share the calendar with the service account (\"Make changes to events\")"
                " or set google_impersonate_user",
            )
        )

    if issues:
        _print_issues(issues, console)
        return False

    return True


def _print_issues(issues: list[tuple[str, str, str]], console: Console) -> None:
    body = Text()
    for i, (label, detail, hint) in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {label}: ", style="bold red")
        body.append(detail, style="bold red")
        body.append(f"\n       → {hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))
