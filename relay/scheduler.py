import logging
import threading
from typing import Callable, List, Optional, Set

from relay.config import MAX_CONCURRENT_JOBS
from relay.job_queue import Job, JobQueue

logger = logging.getLogger("docrelay")


class Scheduler:
    """
    Admission control for queued jobs.

    At most ``max_concurrent`` jobs run at once and at most one of them
    belongs to any given user. Users with queued work are served round-robin:
    a user who just got a slot goes to the back of the line, so everyone who
    is waiting is admitted before that user is served again.

    ``launch`` receives each admitted job and must start it without blocking;
    whoever runs the job reports back through ``on_job_finished``. If
    ``launch`` raises, the slot is released and the job goes to
    ``on_launch_failed`` so its owner can close it out.
    """

    def __init__(
        self,
        queue: JobQueue,
        launch: Callable[[Job], None],
        max_concurrent: int = MAX_CONCURRENT_JOBS,
        on_launch_failed: Optional[Callable[[Job], None]] = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.queue = queue
        self.max_concurrent = max_concurrent
        self._launch = launch
        self._on_launch_failed = on_launch_failed
        self._lock = threading.Lock()
        self._in_flight = 0
        self._in_flight_users: Set[int] = set()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def is_in_flight(self, user_id: int) -> bool:
        return user_id in self._in_flight_users

    def submit(self, job: Job) -> int:
        """Queue a job and try to admit it right away. Returns the user's queue length."""
        with self._lock:
            position = self.queue.enqueue(job.user_id, job)
        logger.info("Queued job %s for user %s (position %d)", job.job_id, job.user_id, position)
        self.on_job_arrived(job.user_id)
        return position

    def on_job_arrived(self, user_id: int) -> None:
        with self._lock:
            admitted = self._sweep()
        self._dispatch(admitted)

    def on_job_finished(self, user_id: int) -> None:
        with self._lock:
            if user_id in self._in_flight_users:
                self._in_flight_users.discard(user_id)
                self._in_flight -= 1
            else:
                logger.critical("Finish reported for user %s with no job in flight; counters left as is", user_id)
            admitted = self._sweep()
        self._dispatch(admitted)

    def _sweep(self) -> List[Job]:
        # caller holds self._lock
        admitted = []
        for user_id in self.queue.pending_users():
            if self._in_flight >= self.max_concurrent:
                break
            if user_id in self._in_flight_users:
                continue
            job = self.queue.dequeue(user_id)
            if job is None:
                continue
            self._in_flight_users.add(user_id)
            self._in_flight += 1
            self.queue.rotate(user_id)
            admitted.append(job)
        return admitted

    def _dispatch(self, admitted: List[Job]) -> None:
        for job in admitted:
            logger.info("Admitted job %s for user %s (%d/%d in flight)",
                        job.job_id, job.user_id, self._in_flight, self.max_concurrent)
            try:
                self._launch(job)
            except Exception:
                logger.critical("Could not start job %s for user %s", job.job_id, job.user_id, exc_info=True)
                self.on_job_finished(job.user_id)
                if self._on_launch_failed is not None:
                    self._on_launch_failed(job)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "in_flight": self._in_flight,
                "users_in_flight": sorted(self._in_flight_users),
                "queued": len(self.queue),
                "max_concurrent": self.max_concurrent,
            }
