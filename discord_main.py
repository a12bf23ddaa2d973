import os

from dotenv import load_dotenv

from application.services import build_components
from interfaces.discord.handlers import create_discord_bot
from settings import configure_logging, create_store, load_settings


load_dotenv()

DISCORD_TOKEN = os.environ.get("DISCORD_TOKEN")


def main() -> None:
    if not DISCORD_TOKEN:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    settings = load_settings()
    configure_logging(settings)

    components = build_components(
        create_store(settings),
        starting_balance=settings.starting_balance,
        heist_entry_cost=settings.heist_entry_cost,
        retry_attempts=settings.credit_retry_attempts,
        retry_delay=settings.credit_retry_delay,
    )

    bot = create_discord_bot(components)
    # Logging is already configured; stop discord.py from installing its own handler.
    bot.run(DISCORD_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
