import json
import threading

import httpx
import pytest

from relay.notifier import LogNotifier, TelegramNotifier, build_notifier
from relay.processor import (
    CeleryArtifactProcessor,
    LocalArtifactProcessor,
    ProcessingError,
    build_processor,
)
from workers import relay_worker
from workers.utils import DocumentError


class FakeAsyncResult:
    def __init__(self, result, polls_until_ready=2, failed=False):
        self.id = "task-1"
        self.result = result
        self._polls = polls_until_ready
        self._failed = failed
        self.threads = set()

    def ready(self):
        self.threads.add(threading.get_ident())
        self._polls -= 1
        return self._polls < 0

    def failed(self):
        return self._failed


class FakeCelery:
    def __init__(self, result):
        self.result = result
        self.sent = []

    def send_task(self, name, args=None):
        self.sent.append((name, args))
        return self.result


@pytest.mark.parametrize("name, supported", [
    ("essay.pdf", True),
    ("Essay.DOCX", True),
    ("notes.txt", True),
    ("photo.jpg", False),
    ("noextension", False),
    ("", False),
])
def test_supports(name, supported):
    assert LocalArtifactProcessor().supports(name) is supported


@pytest.mark.asyncio
async def test_local_processor_maps_document_errors(monkeypatch):
    def fake_process(path, params):
        raise DocumentError("PDF is password protected", reason="encrypted")

    monkeypatch.setattr(relay_worker, "process_document", fake_process)

    with pytest.raises(ProcessingError) as exc_info:
        await LocalArtifactProcessor().process("/tmp/x.pdf")

    assert exc_info.value.reason == "encrypted"


@pytest.mark.asyncio
async def test_local_processor_returns_worker_output(monkeypatch):
    monkeypatch.setattr(relay_worker, "process_document", lambda path, params: path + ".out")

    assert await LocalArtifactProcessor().process("/tmp/x.pdf") == "/tmp/x.pdf.out"


@pytest.mark.asyncio
async def test_celery_processor_polls_until_ready():
    app = FakeCelery(FakeAsyncResult({"ok": True, "file_path": "/data/processed_x.pdf"}))
    processor = CeleryArtifactProcessor(app, poll_interval=0)

    assert await processor.process("/data/x.pdf") == "/data/processed_x.pdf"
    assert app.sent == [("process_document", ["/data/x.pdf", {}])]


@pytest.mark.asyncio
async def test_celery_processor_polls_off_the_event_loop():
    result = FakeAsyncResult({"ok": True, "file_path": "/data/processed_x.pdf"})
    processor = CeleryArtifactProcessor(FakeCelery(result), poll_interval=0)

    await processor.process("/data/x.pdf")

    assert result.threads
    assert threading.get_ident() not in result.threads


@pytest.mark.asyncio
async def test_celery_processor_failure_payload():
    app = FakeCelery(FakeAsyncResult({"ok": False, "reason": "malformed", "error": "bad pdf"}))

    with pytest.raises(ProcessingError) as exc_info:
        await CeleryArtifactProcessor(app, poll_interval=0).process("/data/x.pdf")

    assert exc_info.value.reason == "malformed"
    assert str(exc_info.value) == "bad pdf"


@pytest.mark.asyncio
async def test_celery_processor_task_crash():
    app = FakeCelery(FakeAsyncResult(RuntimeError("worker lost"), failed=True))

    with pytest.raises(ProcessingError) as exc_info:
        await CeleryArtifactProcessor(app, poll_interval=0).process("/data/x.pdf")

    assert "worker lost" in str(exc_info.value)


def test_build_processor():
    assert isinstance(build_processor("local"), LocalArtifactProcessor)
    assert isinstance(build_processor("celery"), CeleryArtifactProcessor)
    with pytest.raises(ValueError):
        build_processor("carrier-pigeon")


def test_build_notifier():
    assert isinstance(build_notifier(None), LogNotifier)
    assert isinstance(build_notifier("123:abc"), TelegramNotifier)


@pytest.mark.asyncio
async def test_telegram_notifier_sends_message_and_document(tmp_path):
    requests_seen = []

    def handler(request):
        requests_seen.append(request)
        return httpx.Response(200, json={"ok": True, "result": {}})

    notifier = TelegramNotifier("123:abc", transport=httpx.MockTransport(handler))
    report = tmp_path / "report.pdf"
    report.write_bytes(b"%PDF-1.4 report")

    await notifier.notify(42, "hello")
    await notifier.deliver_file(42, str(report), caption="done")

    assert [r.url.path.rsplit("/", 1)[-1] for r in requests_seen] == ["sendMessage", "sendDocument"]
    assert b"hello" in requests_seen[0].content
    assert b"report.pdf" in requests_seen[1].content


@pytest.mark.asyncio
async def test_telegram_notifier_raises_on_api_error():
    def handler(request):
        return httpx.Response(200, content=json.dumps({"ok": False, "description": "chat not found"}))

    notifier = TelegramNotifier("123:abc", transport=httpx.MockTransport(handler))

    with pytest.raises(RuntimeError, match="chat not found"):
        await notifier.notify(42, "hello")
