"""
QuotaResetWorkflow — start-of-period housekeeping for one service's pool.

Meant to run on a Temporal cron schedule (daily for per-day quotas).
Workflow ID = f"quota-reset:{service_name}", so overlapping runs dedupe.
"""
from dataclasses import dataclass
from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from keypool.config import settings
    from keypool.workflows.activities import (
        RecoverInactiveInput,
        ResetUsageInput,
        recover_inactive_credentials,
        reset_service_usage,
    )


@dataclass
class QuotaResetInput:
    service_name: str
    recover_inactive: bool = True


@dataclass
class QuotaResetResult:
    reset_keys: int = 0
    recovered_keys: int = 0


@workflow.defn
class QuotaResetWorkflow:
    @workflow.run
    async def run(self, input: QuotaResetInput) -> QuotaResetResult:
        # Step 1: Bring back keys that were switched off long enough ago
        recovered = 0
        if input.recover_inactive:
            recovered = await workflow.execute_activity(
                recover_inactive_credentials,
                RecoverInactiveInput(
                    service_name=input.service_name,
                    older_than_hours=settings.quota_reset_hours,
                ),
                start_to_close_timeout=timedelta(seconds=30),
                retry_policy=RetryPolicy(maximum_attempts=3),
            )

        # Step 2: New quota period for everyone
        reset = await workflow.execute_activity(
            reset_service_usage,
            ResetUsageInput(service_name=input.service_name),
            start_to_close_timeout=timedelta(seconds=30),
            retry_policy=RetryPolicy(maximum_attempts=3),
        )

        return QuotaResetResult(reset_keys=reset, recovered_keys=recovered)
