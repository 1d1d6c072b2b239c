import time
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional


@dataclass
class Job:
    user_id: int
    source_path: str
    file_name: str
    file_size: int
    submitted_at: float = field(default_factory=time.time)
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class JobQueue:
    """
    FIFO queue per user. Users with queued work are also kept in a service
    order so the scheduler can walk them round-robin.

    Not thread-safe on its own; the Scheduler serializes access.
    """

    def __init__(self):
        self._queues: "OrderedDict[int, Deque[Job]]" = OrderedDict()

    def enqueue(self, user_id: int, job: Job) -> int:
        queue = self._queues.get(user_id)
        if queue is None:
            queue = self._queues[user_id] = deque()
        queue.append(job)
        return len(queue)

    def peek_next(self, user_id: int) -> Optional[Job]:
        queue = self._queues.get(user_id)
        return queue[0] if queue else None

    def dequeue(self, user_id: int) -> Optional[Job]:
        queue = self._queues.get(user_id)
        if not queue:
            return None
        job = queue.popleft()
        if not queue:
            del self._queues[user_id]
        return job

    def rotate(self, user_id: int) -> None:
        """Send a user to the back of the service order."""
        if user_id in self._queues:
            self._queues.move_to_end(user_id)

    def pending_users(self) -> List[int]:
        return list(self._queues)

    def depth(self, user_id: int) -> int:
        return len(self._queues.get(user_id, ()))

    def __len__(self):
        return sum(len(q) for q in self._queues.values())
