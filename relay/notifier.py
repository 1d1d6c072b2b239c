import logging
import os

import httpx

logger = logging.getLogger("docrelay")

TELEGRAM_API = "https://api.telegram.org"


class Notifier:
    """Outbound chat channel. Errors are raised to the caller, never retried here."""

    async def notify(self, user_id: int, message: str) -> None:
        raise NotImplementedError

    async def deliver_file(self, user_id: int, file_path: str, caption: str = "") -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Used when no bot token is configured."""

    async def notify(self, user_id, message):
        logger.info("[to %s] %s", user_id, message)

    async def deliver_file(self, user_id, file_path, caption=""):
        logger.info("[to %s] file %s (%s)", user_id, file_path, caption)


class TelegramNotifier(Notifier):
    def __init__(self, token: str, timeout: float = 60, transport: httpx.AsyncBaseTransport = None):
        self.base_url = f"{TELEGRAM_API}/bot{token}"
        self.timeout = timeout
        self.transport = transport

    async def _call(self, method, data, files=None):
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.post(f"{self.base_url}/{method}", data=data, files=files)
        r.raise_for_status()
        payload = r.json()
        if not payload.get("ok"):
            raise RuntimeError(f"Telegram {method} failed: {payload.get('description', 'unknown')}")
        return payload

    async def notify(self, user_id, message):
        await self._call("sendMessage", {"chat_id": str(user_id), "text": message})

    async def deliver_file(self, user_id, file_path, caption=""):
        with open(file_path, "rb") as f:
            files = {"document": (os.path.basename(file_path), f.read())}
        await self._call("sendDocument", {"chat_id": str(user_id), "caption": caption}, files=files)


def build_notifier(token=None) -> Notifier:
    if token:
        return TelegramNotifier(token)
    return LogNotifier()
