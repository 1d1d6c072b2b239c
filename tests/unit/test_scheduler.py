import logging

import pytest

from relay.job_queue import Job, JobQueue
from relay.scheduler import Scheduler


def _job(user_id, name="doc.pdf"):
    return Job(user_id=user_id, source_path=f"/tmp/{name}", file_name=name, file_size=1)


class Launcher:
    def __init__(self, fail_first=False):
        self.started = []
        self.fail_first = fail_first

    def __call__(self, job):
        if self.fail_first:
            self.fail_first = False
            raise RuntimeError("no event loop")
        self.started.append(job)


@pytest.fixture
def launcher():
    return Launcher()


def test_ceiling_limits_admissions(launcher):
    scheduler = Scheduler(JobQueue(), launcher, max_concurrent=2)
    for user_id in range(5):
        scheduler.submit(_job(user_id))

    assert [j.user_id for j in launcher.started] == [0, 1]
    assert scheduler.in_flight == 2
    assert len(scheduler.queue) == 3


def test_one_job_per_user_in_flight(launcher):
    scheduler = Scheduler(JobQueue(), launcher, max_concurrent=2)
    positions = [scheduler.submit(_job(7, f"{n}.pdf")) for n in range(5)]

    # the first one is admitted straight away, the rest wait behind it
    assert positions == [1, 1, 2, 3, 4]
    assert [j.file_name for j in launcher.started] == ["0.pdf"]
    assert scheduler.in_flight == 1

    scheduler.on_job_finished(7)
    assert [j.file_name for j in launcher.started] == ["0.pdf", "1.pdf"]
    assert scheduler.is_in_flight(7)


def test_finished_slot_goes_round_robin(launcher):
    scheduler = Scheduler(JobQueue(), launcher, max_concurrent=1)
    for name in ("a1", "a2", "a3"):
        scheduler.submit(_job("a", name))
    scheduler.submit(_job("b", "b1"))

    scheduler.on_job_finished("a")
    scheduler.on_job_finished("a")
    scheduler.on_job_finished("b")
    scheduler.on_job_finished("a")

    assert [j.file_name for j in launcher.started] == ["a1", "a2", "b1", "a3"]
    assert scheduler.snapshot() == {
        "in_flight": 0,
        "users_in_flight": [],
        "queued": 0,
        "max_concurrent": 1,
    }


def test_every_waiting_user_is_served(launcher):
    scheduler = Scheduler(JobQueue(), launcher, max_concurrent=1)
    for user_id in ("a", "b", "c"):
        scheduler.submit(_job(user_id))

    while scheduler.in_flight:
        scheduler.on_job_finished(launcher.started[-1].user_id)

    assert sorted(j.user_id for j in launcher.started) == ["a", "b", "c"]


def test_finish_for_idle_user_leaves_counters(launcher, caplog):
    scheduler = Scheduler(JobQueue(), launcher, max_concurrent=2)
    scheduler.submit(_job(1))

    with caplog.at_level(logging.CRITICAL, logger="docrelay"):
        scheduler.on_job_finished(2)

    assert scheduler.in_flight == 1
    assert scheduler.is_in_flight(1)
    assert "no job in flight" in caplog.text


def test_failed_launch_releases_slot():
    launcher = Launcher(fail_first=True)
    scheduler = Scheduler(JobQueue(), launcher, max_concurrent=1)

    scheduler.submit(_job(1))
    assert scheduler.in_flight == 0
    assert not scheduler.is_in_flight(1)

    scheduler.submit(_job(2))
    assert [j.user_id for j in launcher.started] == [2]


def test_failed_launch_hands_job_back(caplog):
    dropped = []
    scheduler = Scheduler(JobQueue(), Launcher(fail_first=True), max_concurrent=1, on_launch_failed=dropped.append)

    with caplog.at_level(logging.CRITICAL, logger="docrelay"):
        scheduler.submit(_job(1, "lost.pdf"))

    assert [j.file_name for j in dropped] == ["lost.pdf"]
    assert scheduler.snapshot()["in_flight"] == 0
    assert "Could not start job" in caplog.text


def test_ceiling_must_be_positive(launcher):
    with pytest.raises(ValueError):
        Scheduler(JobQueue(), launcher, max_concurrent=0)
