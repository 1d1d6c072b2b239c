import asyncio
import logging
import os
from typing import Optional, Set

from relay import config, messages
from relay.audit import OutcomeLog, OutcomeStatus
from relay.job_queue import Job, JobQueue
from relay.ledger import QuotaLedger
from relay.notifier import Notifier, build_notifier
from relay.processor import ArtifactProcessor, build_processor
from relay.runner import JobRunner
from relay.scheduler import Scheduler

logger = logging.getLogger("docrelay")


class RelayService:
    """Wires queue, scheduler and runner together and takes submissions."""

    def __init__(
        self,
        ledger: QuotaLedger,
        outcomes: OutcomeLog,
        processor: ArtifactProcessor,
        notifier: Notifier,
        max_concurrent: int = config.MAX_CONCURRENT_JOBS,
        processing_timeout: float = config.PROCESSING_TIMEOUT,
        work_dir: str = config.WORK_DIR,
    ):
        self.ledger = ledger
        self.outcomes = outcomes
        self.queue = JobQueue()
        self.scheduler = Scheduler(
            self.queue,
            launch=self._spawn,
            max_concurrent=max_concurrent,
            on_launch_failed=self._launch_failed,
        )
        self.runner = JobRunner(
            ledger,
            processor,
            notifier,
            outcomes,
            on_finished=self.scheduler.on_job_finished,
            work_dir=work_dir,
            timeout=processing_timeout,
        )
        self._tasks: Set[asyncio.Task] = set()

    def submit_job(self, user_id: int, file_ref: str, file_size: int, file_name: Optional[str] = None) -> int:
        """
        Queue a stored upload for processing. Must be called from the event
        loop thread; returns the user's queue length for display only.

        Raises RuntimeError outside a running loop, before anything is queued,
        so the caller still owns the upload.
        """
        asyncio.get_running_loop()
        self.ledger.get_or_create(user_id)
        job = Job(
            user_id=user_id,
            source_path=file_ref,
            file_name=file_name or os.path.basename(file_ref),
            file_size=file_size,
        )
        return self.scheduler.submit(job)

    def _spawn(self, job: Job) -> None:
        self._track(asyncio.get_running_loop().create_task(self.runner.run(job)))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _launch_failed(self, job: Job) -> None:
        # The runner never saw this job, so its upload and outcome are ours to close
        if os.path.exists(job.source_path):
            os.remove(job.source_path)
        self.outcomes.record(job, OutcomeStatus.FAILED)
        text = messages.failure_message("the job could not be started", "internal")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("No event loop to tell user %s that job %s was dropped", job.user_id, job.job_id)
            return
        self._track(loop.create_task(self.runner.notify_user(job.user_id, text)))

    async def drain(self) -> None:
        """Wait until every queued and running job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def build_service(session_factory) -> RelayService:
    return RelayService(
        ledger=QuotaLedger(session_factory),
        outcomes=OutcomeLog(session_factory),
        processor=build_processor(),
        notifier=build_notifier(config.TELEGRAM_BOT_TOKEN),
    )
