import asyncio
import logging
import os

from relay.config import CELERY_POLL_INTERVAL, PROCESSOR_BACKEND
from workers.utils import DocumentError

logger = logging.getLogger("docrelay")

SUPPORTED_EXTENSIONS = frozenset({".pdf", ".doc", ".docx", ".txt", ".rtf", ".odt"})


class ProcessingError(Exception):
    """The processing step failed; ``reason`` picks the message shown to the user."""

    def __init__(self, message, reason=None):
        super().__init__(message)
        self.reason = reason


class ArtifactProcessor:
    """
    Turns a local document into a processed artifact on local disk.

    ``process`` returns the artifact path or raises ProcessingError. It does
    not bound its own running time; the caller wraps it in a timeout.
    """

    supported_extensions = SUPPORTED_EXTENSIONS

    def supports(self, file_name: str) -> bool:
        _, ext = os.path.splitext(file_name or "")
        return ext.lower() in self.supported_extensions

    async def process(self, local_path: str) -> str:
        raise NotImplementedError


class LocalArtifactProcessor(ArtifactProcessor):
    """Runs the worker function in a thread of this process."""

    def __init__(self, params=None):
        self.params = params or {}

    async def process(self, local_path: str) -> str:
        from workers.relay_worker import process_document

        try:
            return await asyncio.to_thread(process_document, local_path, self.params)
        except DocumentError as exc:
            raise ProcessingError(str(exc), reason=exc.reason) from exc


class CeleryArtifactProcessor(ArtifactProcessor):
    """Sends the document to a Celery worker and polls for the result."""

    def __init__(self, celery_app, poll_interval: float = CELERY_POLL_INTERVAL, params=None):
        self.celery_app = celery_app
        self.poll_interval = poll_interval
        self.params = params or {}

    async def process(self, local_path: str) -> str:
        # Broker and result backend calls block, so they run in threads
        task = await asyncio.to_thread(
            self.celery_app.send_task, "process_document", args=[local_path, self.params]
        )
        logger.info("Sent %s to worker as task %s", os.path.basename(local_path), task.id)

        # Cancelling this coroutine only stops the wait; the worker keeps going
        # and whatever it produces afterwards is ignored.
        while not await asyncio.to_thread(task.ready):
            await asyncio.sleep(self.poll_interval)

        failed = await asyncio.to_thread(task.failed)
        result = await asyncio.to_thread(getattr, task, "result")
        if failed:
            raise ProcessingError(f"Worker task failed: {result}", reason="remote")

        payload = result or {}
        if not payload.get("ok"):
            raise ProcessingError(payload.get("error", "unknown error"), reason=payload.get("reason"))
        return payload["file_path"]


def build_processor(backend: str = PROCESSOR_BACKEND) -> ArtifactProcessor:
    if backend == "celery":
        from workers.celery_app import celery_app

        return CeleryArtifactProcessor(celery_app)
    if backend == "local":
        return LocalArtifactProcessor()
    raise ValueError(f"Unknown PROCESSOR_BACKEND: {backend}")
