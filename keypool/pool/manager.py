"""
Credential pool manager — key selection, usage accounting, circuit breaking.

Rules:
- Durable state lives in the `credentials` table; the pool holds no lock and
  no background task. Cool-downs are evaluated lazily inside acquire().
- Every mutation is a single conditional UPDATE (compare-and-swap on the
  values that were read). rowcount == 0 means another caller got there first.
- usage_count is bumped at acquisition time, so quotas count attempts.
- The decrypted secret exists only on the returned handle.
"""
import logging
import uuid
import weakref
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Iterable

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keypool.config import PoolConfig, settings
from keypool.core.exceptions import (
    InvalidHandleError,
    PoolExhaustedError,
    SecretDecryptionError,
    UnknownServiceError,
)
from keypool.credentials.models import CircuitState, Credential, FailureReason
from keypool.credentials.service import reveal_secret
from keypool.db.base import utcnow
from keypool.pool import policy
from keypool.pool.handle import CredentialHandle
from keypool.providers.base import ProviderCallError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Ranking per selection_tiebreak; the id makes the order total.
_ORDERINGS = {
    "least_used": (Credential.priority, Credential.usage_count, Credential.created_at, Credential.id),
    "fill_first": (Credential.priority, Credential.created_at, Credential.id),
}


async def try_claim(db: AsyncSession, cred: Credential, now: datetime) -> bool:
    """
    Atomically take `cred` as read: bump usage_count and, for an OPEN (or
    abandoned HALF_OPEN) key, mark the trial. Fails if anyone touched the row
    since it was read, which is what keeps a trial slot single-holder.
    """
    values: dict = {"usage_count": Credential.usage_count + 1, "updated_at": now}
    if cred.circuit_state != CircuitState.CLOSED:
        values["circuit_state"] = CircuitState.HALF_OPEN
        values["last_tested_at"] = now

    result = await db.execute(
        update(Credential)
        .where(
            Credential.id == cred.id,
            Credential.usage_count == cred.usage_count,
            Credential.circuit_state == cred.circuit_state,
            Credential.is_active.is_(True),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


class CredentialPool:
    """
    Hands out the best available credential for a service and absorbs
    success/failure feedback about it.

    Construct once per process with a session factory; pass it to whatever
    needs keys (FastAPI keeps it on app.state).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: PoolConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or settings.pool_config()
        self._clock = clock
        if self._config.selection_tiebreak not in _ORDERINGS:
            raise ValueError(f"Unknown selection_tiebreak: {self._config.selection_tiebreak}")
        # Handles not yet reported on. Weak, so a dropped handle cannot leak.
        self._live: weakref.WeakValueDictionary[uuid.UUID, CredentialHandle] = (
            weakref.WeakValueDictionary()
        )

    @property
    def config(self) -> PoolConfig:
        return self._config

    # ── acquisition ───────────────────────────────────────────────────────────

    async def acquire(
        self, service_name: str, exclude: Iterable[uuid.UUID] = ()
    ) -> CredentialHandle:
        """
        Claim the best eligible credential for `service_name`. Keys in
        `exclude` are skipped, so a caller retrying after a failure moves on
        to a different key.
        """
        if not service_name or not service_name.strip():
            raise ValueError("service_name is required")

        excluded: set[uuid.UUID] = set(exclude)
        races = 0
        while True:
            async with self._session_factory() as db:
                async with db.begin():
                    now = self._clock()
                    cred = await self._select(db, service_name, excluded, now)
                    cred_id = cred.id
                    is_trial = cred.circuit_state != CircuitState.CLOSED

                    try:
                        secret = reveal_secret(cred)
                    except SecretDecryptionError:
                        logger.error("Skipping credential %s: secret cannot be decrypted", cred_id)
                        excluded.add(cred_id)
                        continue

                    claimed = await try_claim(db, cred, now)
                    if claimed:
                        handle = CredentialHandle(
                            credential_id=cred_id,
                            service_name=service_name,
                            key_name=cred.key_name,
                            secret=secret,
                            is_trial=is_trial,
                            acquired_at=now,
                        )

            if claimed:
                break
            races += 1
            if is_trial:
                # Someone else took the trial slot.
                excluded.add(cred_id)
            logger.debug("Lost selection race on credential %s (%d so far)", cred_id, races)
            if races >= self._config.acquire_max_races:
                raise PoolExhaustedError(
                    service_name,
                    f"Could not claim a credential for service {service_name} under contention",
                )

        self._live[handle.lease_id] = handle
        if handle.is_trial:
            logger.info("Credential %s (%s) handed out as half-open trial", cred_id, handle.key_name)
        else:
            logger.debug("Acquired credential %s (%s) for %s", cred_id, handle.key_name, service_name)
        return handle

    async def _select(
        self,
        db: AsyncSession,
        service_name: str,
        excluded: set[uuid.UUID],
        now: datetime,
    ) -> Credential:
        # Activity and quota are filtered in SQL and rows come back ranked.
        # Cool-down windows are checked per row in policy.is_selectable.
        q = (
            select(Credential)
            .where(
                Credential.service_name == service_name,
                Credential.is_active.is_(True),
                or_(
                    Credential.usage_limit.is_(None),
                    Credential.usage_count < Credential.usage_limit,
                ),
            )
            .order_by(*_ORDERINGS[self._config.selection_tiebreak])
        )
        if excluded:
            q = q.where(Credential.id.not_in(list(excluded)))

        seen_any = False
        for cred in (await db.execute(q)).scalars():
            seen_any = True
            if policy.is_selectable(cred, now, self._config):
                return cred

        if not seen_any:
            registered = await db.execute(
                select(Credential.id).where(Credential.service_name == service_name).limit(1)
            )
            if registered.scalar_one_or_none() is None:
                raise UnknownServiceError(service_name)
        raise PoolExhaustedError(service_name)

    @asynccontextmanager
    async def lease(
        self, service_name: str, exclude: Iterable[uuid.UUID] = ()
    ) -> AsyncIterator[CredentialHandle]:
        """
        Acquire a key for the body of the block and report on exit: success
        on a clean exit, the classified reason on ProviderCallError. Any other
        exception says nothing about the key, so the handle is just released.
        """
        handle = await self.acquire(service_name, exclude=exclude)
        try:
            yield handle
        except ProviderCallError as exc:
            await self.report_failure(handle, exc.reason)
            raise
        except BaseException:
            self.release(handle)
            raise
        else:
            await self.report_success(handle)

    def release(self, handle: CredentialHandle) -> None:
        """Drop a handle without reporting, when the external call never happened."""
        self._live.pop(handle.lease_id, None)

    # ── feedback ──────────────────────────────────────────────────────────────

    async def report_success(self, handle: CredentialHandle) -> None:
        try:
            self._take(handle)
        except InvalidHandleError as exc:
            logger.warning("Ignoring success report for credential %s: %s", handle.credential_id, exc.message)
            return
        await self._record(handle, reason=None)

    async def report_failure(self, handle: CredentialHandle, reason: FailureReason) -> None:
        try:
            self._take(handle)
        except InvalidHandleError as exc:
            logger.warning("Ignoring failure report for credential %s: %s", handle.credential_id, exc.message)
            return
        await self._record(handle, reason=FailureReason(reason))

    def _take(self, handle: CredentialHandle) -> None:
        if self._live.get(handle.lease_id) is not handle:
            raise InvalidHandleError(f"lease {handle.lease_id} is unknown or already reported")
        del self._live[handle.lease_id]

    async def _record(self, handle: CredentialHandle, reason: FailureReason | None) -> None:
        """Apply one outcome. A lost update race is retried once, then dropped."""
        for attempt in (1, 2):
            async with self._session_factory() as db:
                async with db.begin():
                    cred = await db.get(Credential, handle.credential_id)
                    if cred is None:
                        logger.warning("Credential %s vanished before its report", handle.credential_id)
                        return
                    if await self._apply_outcome(db, cred, handle, reason):
                        return
            logger.info(
                "Report for credential %s lost an update race (attempt %d)",
                handle.credential_id,
                attempt,
            )
        logger.warning(
            "Dropped %s report for credential %s after repeated update races",
            "success" if reason is None else reason.value,
            handle.credential_id,
        )

    async def _apply_outcome(
        self,
        db: AsyncSession,
        cred: Credential,
        handle: CredentialHandle,
        reason: FailureReason | None,
    ) -> bool:
        now = self._clock()
        previous = cred.circuit_state
        values: dict = {"updated_at": now}

        if reason is None:
            step = policy.after_success(previous, cred.cooldown_seconds, handle.is_trial, self._config)
            values["last_success_at"] = now
        else:
            step = policy.after_failure(
                previous,
                cred.failure_count,
                cred.cooldown_seconds,
                reason,
                handle.is_trial,
                self._config,
            )
            values["last_failure_at"] = now
            values["last_failure_reason"] = reason
            if reason == FailureReason.AUTH_REJECTED and self._config.deactivate_on_auth_rejected:
                values["is_active"] = False
                values["deactivated_at"] = now
                values["auto_recover"] = False

        result = await db.execute(
            update(Credential)
            .where(
                Credential.id == cred.id,
                Credential.circuit_state == previous,
                Credential.failure_count == cred.failure_count,
            )
            .values(
                circuit_state=step.circuit_state,
                failure_count=step.failure_count,
                cooldown_seconds=step.cooldown_seconds,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        if step.circuit_state != previous:
            log = logger.warning if step.circuit_state == CircuitState.OPEN else logger.info
            log(
                "Credential %s (%s) circuit %s -> %s%s",
                cred.id,
                cred.key_name,
                previous.value,
                step.circuit_state.value,
                f" after {reason.value}, cool-down {step.cooldown_seconds}s" if reason else "",
            )
        if values.get("is_active") is False:
            logger.warning("Credential %s (%s) deactivated: provider rejected it", cred.id, cred.key_name)
        return True
