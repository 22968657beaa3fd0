"""Tests for credential storage: encryption at rest, operator operations, stats."""
from datetime import timedelta

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import select

from keypool.core.exceptions import NotFoundError, SecretDecryptionError
from keypool.core.security import derive_fernet_key
from keypool.credentials.models import CircuitState, Credential, FailureReason
from keypool.credentials.service import (
    decrypt_secret,
    deactivate_credential,
    encrypt_secret,
    get_credential,
    get_pool_stats,
    list_credentials,
    mask_secret,
    reactivate_credential,
    recover_inactive,
    register_credential,
    reset_usage,
    reveal_secret,
)
from keypool.db.base import utcnow


class TestSecrets:
    def test_encrypt_then_decrypt(self):
        assert decrypt_secret(encrypt_secret("AIzaSyExample")) == "AIzaSyExample"

    def test_ciphertext_is_randomized(self):
        assert encrypt_secret("same-key") != encrypt_secret("same-key")

    def test_ciphertext_does_not_contain_plaintext(self):
        assert "AIzaSyExample" not in encrypt_secret("AIzaSyExample")

    def test_mask_long_secret(self):
        assert mask_secret("AIzaSyD-abcdefgh-9xQk") == "AIza…9xQk"

    def test_mask_short_secret_fully(self):
        assert mask_secret("abc") == "***"

    def test_passphrase_derivation_is_stable(self):
        key = derive_fernet_key("english-learning-platform")
        assert key == derive_fernet_key("english-learning-platform")
        assert key != derive_fernet_key("another-passphrase")
        # Must be usable as a Fernet key
        token = Fernet(key).encrypt(b"secret")
        assert Fernet(key).decrypt(token) == b"secret"


@pytest.mark.asyncio
async def test_register_stores_only_ciphertext(db):
    cred = await register_credential(
        db, service_name="gemini", key_name="primary", plaintext_secret="AIza-plain", usage_limit=1500
    )
    await db.commit()

    assert cred.encrypted_secret != "AIza-plain"
    assert reveal_secret(cred) == "AIza-plain"
    assert cred.circuit_state == CircuitState.CLOSED
    assert cred.usage_count == 0
    assert cred.is_active is True


@pytest.mark.asyncio
async def test_register_rejects_bad_input(db):
    with pytest.raises(ValueError):
        await register_credential(db, service_name=" ", key_name="k", plaintext_secret="s")
    with pytest.raises(ValueError):
        await register_credential(db, service_name="gemini", key_name="k", plaintext_secret="s", usage_limit=-1)


@pytest.mark.asyncio
async def test_reveal_raises_typed_error_on_garbage(db):
    cred = Credential(service_name="gemini", key_name="bad", encrypted_secret="garbage")
    db.add(cred)
    await db.flush()

    with pytest.raises(SecretDecryptionError):
        reveal_secret(cred)


@pytest.mark.asyncio
async def test_get_missing_credential(db):
    import uuid

    with pytest.raises(NotFoundError):
        await get_credential(db, uuid.uuid4())


@pytest.mark.asyncio
async def test_list_is_scoped_and_ordered(db):
    await register_credential(db, "gemini", "backup", "s1", priority=2)
    await register_credential(db, "gemini", "primary", "s2", priority=0)
    await register_credential(db, "openai", "other", "s3")
    await db.commit()

    names = [c.key_name for c in await list_credentials(db, "gemini")]
    assert names == ["primary", "backup"]


@pytest.mark.asyncio
async def test_deactivate_then_reactivate(db):
    cred = await register_credential(db, "gemini", "k", "s")
    cred.circuit_state = CircuitState.OPEN
    cred.failure_count = 7
    await db.commit()

    await deactivate_credential(db, cred.id, reason="leaked")
    await db.commit()
    assert cred.is_active is False
    assert cred.deactivated_at is not None

    await reactivate_credential(db, cred.id)
    await db.commit()
    assert cred.is_active is True
    assert cred.circuit_state == CircuitState.CLOSED
    assert cred.failure_count == 0
    assert cred.deactivated_at is None


@pytest.mark.asyncio
async def test_reset_usage_is_per_service(db):
    g = await register_credential(db, "gemini", "g", "s1")
    o = await register_credential(db, "openai", "o", "s2")
    g.usage_count = 40
    o.usage_count = 15
    await db.commit()

    touched = await reset_usage(db, "gemini")
    await db.commit()

    assert touched == 1
    rows = {c.key_name: c.usage_count for c in (await db.execute(
        select(Credential).execution_options(populate_existing=True)
    )).scalars()}
    assert rows == {"g": 0, "o": 15}


@pytest.mark.asyncio
async def test_recover_inactive_after_window(db):
    now = utcnow()
    stale = await register_credential(db, "gemini", "stale", "s1")
    fresh = await register_credential(db, "gemini", "fresh", "s2")
    for cred, age in ((stale, timedelta(hours=30)), (fresh, timedelta(hours=2))):
        await deactivate_credential(db, cred.id, reason="daily quota", auto_recover=True)
        cred.deactivated_at = now - age
        cred.usage_count = 99
        cred.circuit_state = CircuitState.OPEN
    await db.commit()

    recovered = await recover_inactive(db, "gemini", older_than=timedelta(hours=24), now=now)
    await db.commit()

    assert recovered == 1
    for cred in (stale, fresh):
        await db.refresh(cred)
    assert stale.is_active is True
    assert stale.auto_recover is False
    assert stale.usage_count == 0
    assert stale.circuit_state == CircuitState.CLOSED
    assert fresh.is_active is False


@pytest.mark.asyncio
async def test_operator_deactivation_survives_recovery(db):
    cred = await register_credential(db, "gemini", "leaked", "s1")
    await deactivate_credential(db, cred.id, reason="leaked in a commit")
    cred.deactivated_at = utcnow() - timedelta(days=7)
    await db.commit()

    recovered = await recover_inactive(db, "gemini", older_than=timedelta(hours=24))
    await db.commit()

    assert recovered == 0
    await db.refresh(cred)
    assert cred.is_active is False


@pytest.mark.asyncio
async def test_rejected_key_never_auto_recovers(db):
    cred = await register_credential(db, "gemini", "revoked", "s1")
    await deactivate_credential(db, cred.id, auto_recover=True)
    cred.last_failure_reason = FailureReason.AUTH_REJECTED
    cred.deactivated_at = utcnow() - timedelta(days=7)
    await db.commit()

    assert await recover_inactive(db, "gemini", older_than=timedelta(hours=24)) == 0

    await reactivate_credential(db, cred.id)
    await db.commit()
    assert cred.is_active is True
    assert cred.last_failure_reason is None


@pytest.mark.asyncio
async def test_pool_stats(db):
    a = await register_credential(db, "gemini", "a", "s1", usage_limit=100)
    b = await register_credential(db, "gemini", "b", "s2", usage_limit=100)
    c = await register_credential(db, "gemini", "c", "s3")
    d = await register_credential(db, "gemini", "d", "s4")
    await register_credential(db, "openai", "x", "s5")
    a.usage_count = 100
    b.usage_count = 95
    c.usage_count = 5
    c.circuit_state = CircuitState.OPEN
    d.is_active = False
    await db.commit()

    stats = await get_pool_stats(db, "gemini")

    assert stats.total_keys == 4
    assert stats.active_keys == 3
    assert stats.inactive_keys == 1
    assert stats.closed_keys == 3
    assert stats.open_keys == 1
    assert stats.half_open_keys == 0
    assert stats.total_usage == 200
    assert stats.average_usage == 50.0
    assert stats.keys_at_limit == 1
    assert stats.keys_near_limit == 1


@pytest.mark.asyncio
async def test_pool_stats_for_empty_service(db):
    stats = await get_pool_stats(db, "nothing")
    assert stats.total_keys == 0
    assert stats.average_usage == 0.0
