"""
Notification sinks. Each exposes ``send(text)`` and raises NotifyFailure.
"""

import logging
import time

import requests

from .errors import ConfigError, NotifyFailure

log = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
SEND_TIMEOUT = 15


class TelegramNotifier:
    def __init__(self, bot_token, chat_id, http=None, parse_mode="Markdown"):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.parse_mode = parse_mode
        self.http = http or requests.Session()

    def send(self, text):
        url = f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": text, "parse_mode": self.parse_mode}
        try:
            response = self.http.post(url, json=payload, timeout=SEND_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            detail = ""
            if getattr(e, "response", None) is not None:
                detail = f" ({e.response.status_code} - {e.response.text[:200]})"
            raise NotifyFailure(f"telegram send failed: {e}{detail}") from e
        log.info("Telegram message sent (length %d)", len(text))


class DiscordNotifier:
    """Discord webhook sink. Long messages are split on line boundaries."""

    max_len = 1950

    def __init__(self, webhook_url, http=None, part_delay=1.2):
        self.webhook_url = webhook_url
        self.http = http or requests.Session()
        self.part_delay = part_delay

    def split(self, text):
        parts = []
        current = ""
        for line in text.splitlines():
            if len(current) + len(line) + 1 > self.max_len:
                if current:
                    parts.append(current)
                current = line + "\n"
            else:
                current += line + "\n"
        if current:
            parts.append(current)
        return [part for part in parts if part.strip()]

    def send(self, text):
        parts = self.split(text)
        for index, part in enumerate(parts):
            try:
                response = self.http.post(self.webhook_url, json={"content": part}, timeout=SEND_TIMEOUT)
                response.raise_for_status()
            except requests.RequestException as e:
                raise NotifyFailure(f"discord part {index + 1}/{len(parts)} failed: {e}") from e
            log.info("Discord part sent (length %d)", len(part))
            if index < len(parts) - 1 and self.part_delay:
                time.sleep(self.part_delay)


def build_notifier(settings, http=None):
    if settings.notifier == "telegram":
        return TelegramNotifier(settings.bot_token, settings.chat_id, http=http)
    if settings.notifier == "discord":
        return DiscordNotifier(settings.discord_webhook_url, http=http)
    raise ConfigError(f"unknown notifier {settings.notifier!r}")
