"""Run the user-deleted consumer that applies the payment erasure cascade."""
from __future__ import annotations

import signal

from dotenv import load_dotenv

load_dotenv()

from app.config import get_settings  # noqa: E402
from app.core.logging import setup_logging  # noqa: E402
from app.db import close_engine, init_engine  # noqa: E402
from app.services.user_events import UserDeletedConsumer  # noqa: E402


def main() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    init_engine()
    consumer = UserDeletedConsumer(settings)
    signal.signal(signal.SIGTERM, lambda *_: consumer.stop())
    signal.signal(signal.SIGINT, lambda *_: consumer.stop())
    try:
        consumer.run()
    finally:
        close_engine()


if __name__ == "__main__":
    main()
