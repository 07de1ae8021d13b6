import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, account_id: str, message: str) -> None: ...


class LoggingNotifier:
    """Default dispatcher: hands the message to the log and nothing else."""

    def notify(self, account_id: str, message: str) -> None:
        logger.info("notify %s: %s", account_id, message)


class RecordingNotifier:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    def notify(self, account_id: str, message: str) -> None:
        self.sent.append((account_id, message))

    def messages_for(self, account_id: str) -> list[str]:
        return [m for a, m in self.sent if a == account_id]
