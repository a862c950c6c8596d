"""Temporal worker entry point: ``python -m onboarding.temporal.worker``."""

import asyncio

from temporalio.client import Client
from temporalio.worker import Worker

from ..config import TASK_QUEUE, TEMPORAL_ADDRESS
from ..logging_config import configure_engine_logging, get_worker_logger
from .bulk_activities import execute_bulk_operation_activity
from .bulk_workflow import BulkOnboardingWorkflow

logger = get_worker_logger()


async def main() -> None:
    from app.database import init_db

    configure_engine_logging()
    await init_db()
    client = await Client.connect(TEMPORAL_ADDRESS)
    worker = Worker(
        client,
        task_queue=TASK_QUEUE,
        workflows=[BulkOnboardingWorkflow],
        activities=[execute_bulk_operation_activity],
    )
    logger.info(f"Worker listening on {TASK_QUEUE} ({TEMPORAL_ADDRESS})")
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
