import logging
from typing import Optional

import requests

log = logging.getLogger("golazo.telegram")


class TelegramNotifier:
    """Delivers pre-formatted HTML messages to individual chat ids.

    Failures are logged and reported as False; nothing is retried here.
    """

    def __init__(self, bot_token: Optional[str], timeout: float = 10,
                 session: Optional[requests.Session] = None):
        self.bot_token = bot_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.base_url = f"https://api.telegram.org/bot{bot_token}"

    def send_message(self, chat_id: str, text: str) -> bool:
        """POST one HTML message; False on any failure."""
        if not self.bot_token:
            log.warning("Telegram not configured - missing bot_token")
            return False
        if not chat_id:
            log.warning("Telegram send skipped - empty chat_id")
            return False

        try:
            response = self.session.post(
                f"{self.base_url}/sendMessage",
                data={
                    "chat_id": chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.error("Telegram send error to %s: %s", chat_id, e)
            return False

        if not response.ok:
            log.warning("Telegram send to %s failed: %s - %s", chat_id, response.status_code, response.text[:200])
            return False
        log.debug("Telegram message sent to %s", chat_id)
        return True

    def send_pre_alert(self, user_id: str, text: str) -> bool:
        return self.send_message(user_id, text)

    def send_main_alert(self, user_id: str, text: str) -> bool:
        return self.send_message(user_id, text)

    def send_detailed_analysis(self, user_id: str, text: str) -> bool:
        return self.send_message(user_id, text)


class ConsoleNotifier:
    """Development notifier that writes each message to the log."""

    def __init__(self):
        self.sent = 0

    def _emit(self, kind: str, user_id: str, text: str) -> bool:
        self.sent += 1
        log.info("\n==================== %s -> %s ====================\n%s\n%s",
                 kind, user_id, text, "=" * 60)
        return True

    def send_pre_alert(self, user_id: str, text: str) -> bool:
        return self._emit("PRE-ALERT", user_id, text)

    def send_main_alert(self, user_id: str, text: str) -> bool:
        return self._emit("MAIN ALERT", user_id, text)

    def send_detailed_analysis(self, user_id: str, text: str) -> bool:
        return self._emit("ANALYSIS", user_id, text)
