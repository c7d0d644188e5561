"""
Pipeline Package - incremental fetch, classify and notify

Usage:
    from mailcron.pipeline import build_orchestrator

    summary = build_orchestrator(db, fetchers, classifier, notifier).run()
"""

from datetime import timedelta

from .alerts import FAILURE_ALERT_COOLDOWN, FailureAlerter
from .orchestrator import RunOrchestrator, generate_run_id
from .sweep import ProviderSweep, RecipientLocks, UserSweep
from .window import DEFAULT_LOOKBACK, compute_since


def build_orchestrator(
    db,
    fetchers,
    classifier,
    notifier,
    lookback: timedelta = DEFAULT_LOOKBACK,
    cooldown: timedelta = FAILURE_ALERT_COOLDOWN,
    clock=None,
    locks=None,
) -> RunOrchestrator:
    """Wire the sweeps and alerter into an orchestrator."""
    provider_sweep = ProviderSweep(
        db, fetchers, classifier, notifier, lookback=lookback, clock=clock, locks=locks
    )
    alerter = FailureAlerter(db, notifier, cooldown=cooldown, clock=clock)
    return RunOrchestrator(db, UserSweep(provider_sweep, alerter), clock=clock)


__all__ = [
    "DEFAULT_LOOKBACK",
    "FAILURE_ALERT_COOLDOWN",
    "FailureAlerter",
    "ProviderSweep",
    "RecipientLocks",
    "RunOrchestrator",
    "UserSweep",
    "build_orchestrator",
    "compute_since",
    "generate_run_id",
]
