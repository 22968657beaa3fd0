"""Temporal worker entrypoint. Run with: python -m keypool.workflows.worker"""
import asyncio
import logging

from temporalio.client import Client
from temporalio.worker import Worker

from keypool.config import settings
from keypool.workflows.activities import (
    recover_inactive_credentials,
    reset_service_usage,
)
from keypool.workflows.quota_reset import QuotaResetWorkflow

logger = logging.getLogger(__name__)


async def main() -> None:
    logging.basicConfig(level=settings.log_level.upper())
    client = await Client.connect(settings.temporal_host)

    worker = Worker(
        client,
        task_queue=settings.temporal_task_queue,
        workflows=[QuotaResetWorkflow],
        activities=[
            reset_service_usage,
            recover_inactive_credentials,
        ],
    )

    logger.info("Worker started on task queue: %s", settings.temporal_task_queue)
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
