import uuid
from datetime import datetime

from pydantic import BaseModel

from keypool.credentials.models import CircuitState, FailureReason


class CredentialStatus(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    service_name: str
    key_name: str
    usage_count: int
    usage_limit: int | None
    priority: int
    circuit_state: CircuitState
    failure_count: int
    cooldown_seconds: int
    last_failure_reason: FailureReason | None
    last_failure_at: datetime | None
    last_success_at: datetime | None
    last_tested_at: datetime | None
    is_active: bool
    auto_recover: bool
    created_at: datetime
    secret_hint: str | None = None
    # Never expose encrypted_secret


class PoolStats(BaseModel):
    service_name: str
    total_keys: int = 0
    active_keys: int = 0
    inactive_keys: int = 0
    closed_keys: int = 0
    open_keys: int = 0
    half_open_keys: int = 0
    total_usage: int = 0
    average_usage: float = 0.0
    keys_at_limit: int = 0
    keys_near_limit: int = 0
