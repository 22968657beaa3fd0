"""
Circuit-breaker and selection policy.

Pure functions over a credential's fields. CredentialPool reads a row, asks
these functions for the next state, and writes the answer back with a
conditional UPDATE. Nothing in here touches the database or the clock.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from keypool.config import PoolConfig
from keypool.credentials.models import CircuitState, FailureReason
from keypool.db.base import as_utc


@dataclass(frozen=True)
class Transition:
    circuit_state: CircuitState
    failure_count: int
    cooldown_seconds: int


def quota_reached(usage_count: int, usage_limit: int | None) -> bool:
    return usage_limit is not None and usage_count >= usage_limit


def window_elapsed(since: datetime | None, seconds: int, now: datetime) -> bool:
    if since is None:
        return True
    return as_utc(since) + timedelta(seconds=seconds) <= now


def is_selectable(cred: Any, now: datetime, config: PoolConfig) -> bool:
    """
    Can `acquire` hand this credential out right now?

    OPEN keys qualify once their cool-down has elapsed (they come back as a
    trial). A HALF_OPEN key already has a trial in flight and only qualifies
    again if that trial was abandoned for longer than trial_timeout_seconds.
    """
    if not cred.is_active or quota_reached(cred.usage_count, cred.usage_limit):
        return False
    if cred.circuit_state == CircuitState.CLOSED:
        return True
    if cred.circuit_state == CircuitState.OPEN:
        return window_elapsed(cred.last_failure_at, cred.cooldown_seconds, now)
    return window_elapsed(cred.last_tested_at, config.trial_timeout_seconds, now)


def next_cooldown(current: int, config: PoolConfig) -> int:
    return min(max(current, config.base_cooldown_seconds) * 2, config.max_cooldown_seconds)


def after_success(
    state: CircuitState, cooldown_seconds: int, is_trial: bool, config: PoolConfig
) -> Transition:
    if is_trial and state == CircuitState.HALF_OPEN:
        return Transition(CircuitState.CLOSED, 0, config.base_cooldown_seconds)
    return Transition(state, 0, cooldown_seconds)


def after_failure(
    state: CircuitState,
    failure_count: int,
    cooldown_seconds: int,
    reason: FailureReason,
    is_trial: bool,
    config: PoolConfig,
) -> Transition:
    count = failure_count + 1

    # A rejected credential will not heal by itself.
    if reason == FailureReason.AUTH_REJECTED:
        return Transition(CircuitState.OPEN, count, config.max_cooldown_seconds)

    if is_trial and state == CircuitState.HALF_OPEN:
        return Transition(CircuitState.OPEN, count, next_cooldown(cooldown_seconds, config))

    if state == CircuitState.CLOSED and count >= config.failure_threshold:
        return Transition(CircuitState.OPEN, count, config.base_cooldown_seconds)

    # Reports from non-trial holders never move an OPEN/HALF_OPEN key.
    return Transition(state, count, cooldown_seconds)
