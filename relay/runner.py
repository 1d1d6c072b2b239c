import asyncio
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from typing import Callable

from relay import messages
from relay.audit import OutcomeLog, OutcomeStatus
from relay.config import PROCESSING_TIMEOUT, WORK_DIR
from relay.job_queue import Job
from relay.ledger import AccessReason, QuotaLedger
from relay.notifier import Notifier
from relay.processor import ArtifactProcessor, ProcessingError

logger = logging.getLogger("docrelay")


class JobWorkspace:
    """Scratch directory of one job plus any files it produced elsewhere."""

    def __init__(self, path: str, source: str):
        self.path = path
        self.source = source
        self._stray = []

    def track(self, file_path: str) -> None:
        if file_path and os.path.dirname(os.path.abspath(file_path)) != os.path.abspath(self.path):
            self._stray.append(file_path)

    def release(self) -> None:
        shutil.rmtree(self.path, ignore_errors=True)
        for file_path in self._stray:
            if os.path.exists(file_path):
                os.remove(file_path)


@contextmanager
def job_workspace(job: Job, root: str):
    os.makedirs(root, exist_ok=True)
    path = tempfile.mkdtemp(prefix=f"job_{job.job_id}_", dir=root)
    workspace = JobWorkspace(path, os.path.join(path, os.path.basename(job.file_name) or "document"))
    workspace.track(job.source_path)
    try:
        shutil.move(job.source_path, workspace.source)
        yield workspace
    finally:
        workspace.release()


class JobRunner:
    """
    Runs one admitted job to its end:

        access check -> format check -> processing -> settlement -> delivery

    A check taken from free credits is reserved before processing and handed
    back if processing does not produce an artifact, so a failed job costs
    the user nothing. ``on_finished`` is called exactly once per job, however
    the job ends.
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        processor: ArtifactProcessor,
        notifier: Notifier,
        outcomes: OutcomeLog,
        on_finished: Callable[[int], None],
        work_dir: str = WORK_DIR,
        timeout: float = PROCESSING_TIMEOUT,
    ):
        self.ledger = ledger
        self.processor = processor
        self.notifier = notifier
        self.outcomes = outcomes
        self.on_finished = on_finished
        self.work_dir = work_dir
        self.timeout = timeout

    async def run(self, job: Job) -> None:
        try:
            with job_workspace(job, self.work_dir) as workspace:
                await self._execute(job, workspace)
        except Exception:
            logger.exception("Job %s for user %s aborted", job.job_id, job.user_id)
        finally:
            self.on_finished(job.user_id)

    async def _execute(self, job: Job, workspace: JobWorkspace) -> None:
        decision = self.ledger.check_access(job.user_id)
        if not decision.allowed:
            logger.warning("User %s has no checks left, dropping job %s", job.user_id, job.job_id)
            await self.notify_user(job.user_id, messages.NO_ACCESS)
            return

        if not self.processor.supports(job.file_name):
            logger.warning("Rejected %s for user %s: unsupported type", job.file_name, job.user_id)
            self.outcomes.record(job, OutcomeStatus.REJECTED_UNSUPPORTED)
            formats = ", ".join(sorted(ext.lstrip(".").upper() for ext in self.processor.supported_extensions))
            await self.notify_user(job.user_id, messages.UNSUPPORTED.format(formats=formats))
            return

        await self.notify_user(job.user_id, messages.PROCESSING)

        reserved = decision.reason is AccessReason.FREE_CREDITS
        if reserved and not self.ledger.reserve_one(job.user_id):
            logger.warning("Free check of user %s was spent before job %s started", job.user_id, job.job_id)
            await self.notify_user(job.user_id, messages.NO_ACCESS)
            return

        failure = None
        settled = False
        try:
            artifact_path = await self._process(job, workspace.source)
            workspace.track(artifact_path)
            self.ledger.debit_one(job.user_id, reserved=reserved)
            settled = True
        except ProcessingError as exc:
            failure = exc
        finally:
            if reserved and not settled:
                self.ledger.credit_free(job.user_id, 1)
                logger.info("Returned reserved check to user %s", job.user_id)

        if failure is not None:
            logger.warning("Job %s for user %s failed: %s (%s)", job.job_id, job.user_id, failure, failure.reason)
            self.outcomes.record(job, OutcomeStatus.FAILED)
            await self.notify_user(job.user_id, messages.failure_message(failure, failure.reason))
            return

        self.outcomes.record(job, OutcomeStatus.SUCCESS)
        try:
            await self.notifier.deliver_file(job.user_id, artifact_path, messages.DELIVERY_CAPTION)
        except Exception:
            # The check was done and stays charged
            logger.error("Could not deliver result of job %s to user %s", job.job_id, job.user_id, exc_info=True)

    async def _process(self, job: Job, source: str) -> str:
        try:
            return await asyncio.wait_for(self.processor.process(source), timeout=self.timeout)
        except ProcessingError:
            raise
        except asyncio.TimeoutError as exc:
            raise ProcessingError(f"no result after {self.timeout:g}s", reason="timeout") from exc
        except Exception as exc:
            logger.exception("Processor crashed on job %s", job.job_id)
            raise ProcessingError(str(exc) or type(exc).__name__, reason="internal") from exc

    async def notify_user(self, user_id: int, message: str) -> None:
        """Send a chat message; delivery errors are logged, never raised."""
        try:
            await self.notifier.notify(user_id, message)
        except Exception:
            logger.error("Could not notify user %s", user_id, exc_info=True)
