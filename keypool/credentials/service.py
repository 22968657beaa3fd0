"""Pooled credential management — Fernet-encrypted keys, operator operations, stats."""
import logging
import uuid
from datetime import datetime, timedelta

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from keypool.config import settings
from keypool.core.exceptions import NotFoundError, SecretDecryptionError
from keypool.credentials.models import CircuitState, Credential, FailureReason
from keypool.credentials.schemas import PoolStats
from keypool.db.base import utcnow

logger = logging.getLogger(__name__)

# Usage share at which a key counts as "near its limit" in stats
NEAR_LIMIT_RATIO = 0.9


def _fernet() -> Fernet:
    return Fernet(settings.get_fernet_key())


def encrypt_secret(plaintext: str) -> str:
    return _fernet().encrypt(plaintext.encode()).decode()


def decrypt_secret(ciphertext: str) -> str:
    return _fernet().decrypt(ciphertext.encode()).decode()


def mask_secret(secret: str) -> str:
    """Show just enough of a key to tell keys apart: AIza…9xQk."""
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:4]}…{secret[-4:]}"


def reveal_secret(cred: Credential) -> str:
    try:
        return decrypt_secret(cred.encrypted_secret)
    except InvalidToken as exc:
        raise SecretDecryptionError(str(cred.id)) from exc


async def register_credential(
    db: AsyncSession,
    service_name: str,
    key_name: str,
    plaintext_secret: str,
    usage_limit: int | None = None,
    priority: int = 0,
) -> Credential:
    if not service_name.strip():
        raise ValueError("service_name must not be empty")
    if usage_limit is not None and usage_limit < 0:
        raise ValueError("usage_limit must be non-negative")

    cred = Credential(
        service_name=service_name,
        key_name=key_name,
        encrypted_secret=encrypt_secret(plaintext_secret),
        usage_count=0,
        usage_limit=usage_limit,
        priority=priority,
        circuit_state=CircuitState.CLOSED,
        failure_count=0,
        cooldown_seconds=settings.base_cooldown_seconds,
        is_active=True,
    )
    db.add(cred)
    await db.flush()
    logger.info("Registered credential %s (%s) for service %s", cred.id, key_name, service_name)
    return cred


async def get_credential(db: AsyncSession, credential_id: uuid.UUID) -> Credential:
    cred = await db.get(Credential, credential_id)
    if cred is None:
        raise NotFoundError("Credential", str(credential_id))
    return cred


async def list_credentials(db: AsyncSession, service_name: str) -> list[Credential]:
    result = await db.execute(
        select(Credential)
        .where(Credential.service_name == service_name)
        .order_by(Credential.priority, Credential.created_at)
    )
    return list(result.scalars().all())


async def deactivate_credential(
    db: AsyncSession,
    credential_id: uuid.UUID,
    reason: str | None = None,
    auto_recover: bool = False,
) -> Credential:
    """
    Soft switch-off. Rows are never deleted by the pool.

    With auto_recover=True the key is only parked: recover_inactive brings it
    back once it has been off for the recovery window. Otherwise it stays off
    until reactivate_credential.
    """
    cred = await get_credential(db, credential_id)
    cred.is_active = False
    cred.deactivated_at = utcnow()
    cred.auto_recover = auto_recover
    await db.flush()
    logger.info(
        "Deactivated credential %s (%s): %s",
        credential_id,
        "auto-recover" if auto_recover else "until reactivated",
        reason or "no reason given",
    )
    return cred


async def reactivate_credential(db: AsyncSession, credential_id: uuid.UUID) -> Credential:
    """Operator override: back in rotation with a closed circuit and clean failure history."""
    cred = await get_credential(db, credential_id)
    cred.is_active = True
    cred.deactivated_at = None
    cred.auto_recover = False
    cred.circuit_state = CircuitState.CLOSED
    cred.failure_count = 0
    cred.last_failure_reason = None
    cred.cooldown_seconds = settings.base_cooldown_seconds
    await db.flush()
    logger.info("Reactivated credential %s", credential_id)
    return cred


async def reset_usage(db: AsyncSession, service_name: str) -> int:
    """Zero every usage counter for a service (start of a new quota period)."""
    result = await db.execute(
        update(Credential)
        .where(Credential.service_name == service_name)
        .values(usage_count=0, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    logger.info("Reset usage for %d %s credential(s)", result.rowcount, service_name)
    return result.rowcount


async def recover_inactive(
    db: AsyncSession,
    service_name: str,
    older_than: timedelta,
    now: datetime | None = None,
) -> int:
    """
    Re-enable parked credentials (deactivated with auto_recover) that have
    been off for longer than `older_than`, with usage zeroed and the circuit
    closed. Keys the provider rejected stay off until an operator reactivates
    them.
    """
    cutoff = (now or utcnow()) - older_than
    result = await db.execute(
        update(Credential)
        .where(
            Credential.service_name == service_name,
            Credential.is_active.is_(False),
            Credential.auto_recover.is_(True),
            Credential.last_failure_reason.is_distinct_from(FailureReason.AUTH_REJECTED),
            Credential.deactivated_at.is_not(None),
            Credential.deactivated_at < cutoff,
        )
        .values(
            is_active=True,
            deactivated_at=None,
            auto_recover=False,
            usage_count=0,
            circuit_state=CircuitState.CLOSED,
            failure_count=0,
            cooldown_seconds=settings.base_cooldown_seconds,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Recovered %d inactive %s credential(s)", result.rowcount, service_name)
    return result.rowcount


async def get_pool_stats(db: AsyncSession, service_name: str) -> PoolStats:
    result = await db.execute(
        select(
            Credential.is_active,
            Credential.circuit_state,
            func.count(Credential.id),
            func.coalesce(func.sum(Credential.usage_count), 0),
        )
        .where(Credential.service_name == service_name)
        .group_by(Credential.is_active, Credential.circuit_state)
    )
    stats = PoolStats(service_name=service_name)
    for is_active, state, count, usage in result.all():
        stats.total_keys += count
        stats.total_usage += int(usage)
        if is_active:
            stats.active_keys += count
        else:
            stats.inactive_keys += count
        if state == CircuitState.CLOSED:
            stats.closed_keys += count
        elif state == CircuitState.OPEN:
            stats.open_keys += count
        else:
            stats.half_open_keys += count

    limited = await db.execute(
        select(Credential.usage_count, Credential.usage_limit).where(
            Credential.service_name == service_name,
            Credential.usage_limit.is_not(None),
        )
    )
    for usage_count, usage_limit in limited.all():
        if usage_count >= usage_limit:
            stats.keys_at_limit += 1
        elif usage_count >= usage_limit * NEAR_LIMIT_RATIO:
            stats.keys_near_limit += 1

    if stats.total_keys:
        stats.average_usage = stats.total_usage / stats.total_keys
    return stats
