"""Telegram notifier — best-effort chat messages via the Bot API."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger("cprbot")

_API_BASE = "https://api.telegram.org"


class TelegramNotifier:
    """Sends plain-text messages to a single chat.

    Delivery failures are logged and swallowed; a notification never aborts
    a trading cycle.  Without a token or chat id the notifier only logs.
    """

    def __init__(
        self,
        bot_token: Optional[str],
        chat_id: Optional[str],
        timeout: float = 10.0,
    ) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    async def send(self, text: str) -> bool:
        """Send *text*.  Returns ``True`` if Telegram accepted it."""
        if not self.enabled:
            logger.debug("Telegram disabled — not sent: %s", text)
            return False

        url = f"{_API_BASE}/bot{self._bot_token}/sendMessage"
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    url,
                    json={"chat_id": self._chat_id, "text": text},
                    timeout=self._timeout,
                )
            resp.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            logger.error("Failed to send Telegram message: %s", exc)
            return False
