import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .errors import NotificationError

TELEGRAM_API_URL = "https://api.telegram.org"


@dataclass(frozen=True)
class ChatChannel:
    token: Optional[str]
    chat_id: Optional[str]

    @property
    def reachable(self):
        return bool(self.token and self.chat_id)


def resolve_channel(inbound_chat_id=None, preferences=None, default_token=None, default_chat_id=None):
    """Pick where replies go: the originating chat first, then the user's default."""
    preferences = preferences or {}
    token = preferences.get("telegramToken") or default_token
    chat_id = inbound_chat_id or preferences.get("telegramChatId") or default_chat_id
    return ChatChannel(token=token or None, chat_id=str(chat_id) if chat_id else None)


class TelegramNotifier:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout=10.0, base_url=TELEGRAM_API_URL):
        self._client = client
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._logger = logging.getLogger("granor_proxy.notifier")

    async def _post(self, client, url, payload):
        response = await client.post(url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    async def send_message(self, channel: ChatChannel, text: str):
        if not channel.reachable:
            self._logger.warning("Telegram token or chat id not configured; message not sent")
            return False

        url = f"{self.base_url}/bot{channel.token}/sendMessage"
        payload = {"chat_id": channel.chat_id, "text": text}
        try:
            if self._client is not None:
                await self._post(self._client, url, payload)
            else:
                async with httpx.AsyncClient() as client:
                    await self._post(client, url, payload)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            raise NotificationError(f"Telegram sendMessage failed for chat {channel.chat_id}: {exc}") from exc
        return True
