# main.py
import asyncio
import logging
import sys

from config import check_essential_configs
from database import create_db_and_tables
from trading_bot import TradingBot

# --- Configure Logging ---
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging.INFO
)
# Suppress noisy httpx logs from the API clients
logging.getLogger("httpx").setLevel(logging.WARNING)


async def run() -> None:
    """Starts the core and keeps cached positions refreshed until cancelled."""
    trading_bot = TradingBot()
    try:
        await trading_bot.run_scheduled_tasks()
    finally:
        await trading_bot.close()


if __name__ == "__main__":
    try:
        check_essential_configs()
    except ValueError as e:
        logging.critical(f"Configuration error: {e}")
        sys.exit(1)

    try:
        # Ensure database tables are created on startup
        create_db_and_tables()
        logging.info("Database tables checked/created.")

        asyncio.run(run())

    except KeyboardInterrupt:
        logging.info("Bot stopped by user (Ctrl+C).")
    except Exception as e:
        logging.critical(f"Unhandled exception in main: {e}", exc_info=True)
        sys.exit(1)
