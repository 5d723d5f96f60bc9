import logging
import asyncio
from temporalio.client import Client
from temporalio.worker import Worker
from dispense.config import get_settings
from dispense.logs import configure_logging
from dispense.workflows import MachineLivenessWorkflow
from dispense.activities.liveness import activity_mark_stale_machines_offline

logger = logging.getLogger("liveness-worker")


async def main():
    settings = get_settings()
    configure_logging(settings.log_level)
    try:
        logger.info("Connecting to Temporal...")
        client = await Client.connect(settings.temporal_address)
        worker = Worker(
            client,
            task_queue=settings.liveness_task_queue,
            workflows=[MachineLivenessWorkflow],
            activities=[activity_mark_stale_machines_offline],
        )
        logger.info(f"Liveness worker running on task queue: {settings.liveness_task_queue}")
        await worker.run()
    except Exception as e:
        logger.error(f"Liveness worker crashed: {str(e)}")
        raise

if __name__ == "__main__":
    asyncio.run(main())
