import logging
import os

from dotenv import load_dotenv

from application.services import build_components
from interfaces.telegram.handlers import create_telegram_bot
from settings import configure_logging, create_store, load_settings


load_dotenv()

TELEGRAM_TOKEN = os.environ.get("TELEGRAM_TOKEN")

logger = logging.getLogger(__name__)


def main() -> None:
    if not TELEGRAM_TOKEN:
        raise RuntimeError("TELEGRAM_TOKEN environment variable is not set.")

    settings = load_settings()
    configure_logging(settings)

    components = build_components(
        create_store(settings),
        starting_balance=settings.starting_balance,
        heist_entry_cost=settings.heist_entry_cost,
        retry_attempts=settings.credit_retry_attempts,
        retry_delay=settings.credit_retry_delay,
    )

    bot = create_telegram_bot(TELEGRAM_TOKEN, components)
    logger.info("Telegram bot polling with %s store", settings.store_backend)
    bot.infinity_polling()


if __name__ == "__main__":
    main()
