import os
import tempfile

# Settings are read at import time, so point them somewhere harmless first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="docrelay-test-"))
os.environ["PROCESSOR_BACKEND"] = "local"
os.environ["TELEGRAM_BOT_TOKEN"] = ""

import pytest

from relay import models
from relay.audit import OutcomeLog
from relay.database import make_engine, make_session_factory
from relay.ledger import QuotaLedger
from relay.service import RelayService
from tests.fakes import FakeProcessor, RecordingNotifier


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    models.Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return QuotaLedger(session_factory)


@pytest.fixture
def outcomes(session_factory):
    return OutcomeLog(session_factory)


@pytest.fixture
def work_dir(tmp_path):
    return str(tmp_path / "work")


@pytest.fixture
def upload(tmp_path):
    """Write an intake file and return (path, size)."""
    intake = tmp_path / "intake"
    intake.mkdir(exist_ok=True)

    def _upload(name, content=b"%PDF-1.4 test document"):
        path = intake / name
        path.write_bytes(content)
        return str(path), len(content)

    return _upload


@pytest.fixture
def make_service(ledger, outcomes, work_dir):
    def _make(processor=None, notifier=None, max_concurrent=2, timeout=5):
        return RelayService(
            ledger,
            outcomes,
            processor or FakeProcessor(),
            notifier or RecordingNotifier(),
            max_concurrent=max_concurrent,
            processing_timeout=timeout,
            work_dir=work_dir,
        )

    return _make
