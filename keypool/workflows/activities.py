"""
Temporal activities for the quota reset workflow.

Each activity is a discrete, retryable unit of work in its own transaction.
"""
from dataclasses import dataclass
from datetime import timedelta

from temporalio import activity

from keypool.credentials import service as cred_service
from keypool.db.session import async_session_factory


@dataclass
class ResetUsageInput:
    service_name: str


@dataclass
class RecoverInactiveInput:
    service_name: str
    older_than_hours: int


@activity.defn
async def reset_service_usage(input: ResetUsageInput) -> int:
    """Zero usage counters for the service. Returns the number of keys touched."""
    async with async_session_factory() as db:
        async with db.begin():
            return await cred_service.reset_usage(db, input.service_name)


@activity.defn
async def recover_inactive_credentials(input: RecoverInactiveInput) -> int:
    """Re-enable keys soft-deactivated for longer than the window."""
    async with async_session_factory() as db:
        async with db.begin():
            return await cred_service.recover_inactive(
                db,
                input.service_name,
                older_than=timedelta(hours=input.older_than_hours),
            )
