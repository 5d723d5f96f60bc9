from datetime import timedelta
from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from dispense.activities.liveness import activity_mark_stale_machines_offline


SWEEP_RETRY_POLICY = RetryPolicy(
    maximum_attempts=5,
    initial_interval=timedelta(seconds=1),
    backoff_coefficient=2.0,
    maximum_interval=timedelta(seconds=30),
)

# Keeps workflow history bounded; the run continues as new after this many sweeps.
SWEEPS_PER_RUN = 500


@workflow.defn
class MachineLivenessWorkflow:
    """Periodically marks machines offline once they stop polling and pinging."""

    def __init__(self):
        self.sweeps = 0
        self.last_changed = 0

    @workflow.query
    def status(self) -> dict:
        return {"sweeps": self.sweeps, "last_changed": self.last_changed}

    @workflow.run
    async def run(self, stale_after_seconds: int, interval_seconds: int) -> None:
        while self.sweeps < SWEEPS_PER_RUN:
            try:
                self.last_changed = await workflow.execute_activity(
                    activity_mark_stale_machines_offline,
                    stale_after_seconds,
                    start_to_close_timeout=timedelta(seconds=30),
                    retry_policy=SWEEP_RETRY_POLICY,
                )
            except Exception as e:
                workflow.logger.error(f"[LivenessWorkflow] sweep failed: {e}")
            self.sweeps += 1
            await workflow.sleep(interval_seconds)

        workflow.continue_as_new(args=[stale_after_seconds, interval_seconds])
