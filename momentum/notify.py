"""Fire-and-forget notifications. Delivery problems never reach the caller."""
import logging

logger = logging.getLogger(__name__)


class LogNotifier:
    def notify(self, title: str, message: str) -> None:
        logger.info("%s: %s", title, message)


def deliver(notifier, title: str, message: str) -> None:
    if notifier is None:
        return
    try:
        notifier.notify(title, message)
    except Exception:
        logger.warning("Notification %r could not be delivered", title, exc_info=True)
