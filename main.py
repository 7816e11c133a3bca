"""
StayVia Reminders — Entry Point.

Single entry point: `python main.py` starts the Telegram bot, which delivers
payment reminders and serves lease, payment and calendar commands.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from stayvia.bot.telegram_bot import main

if __name__ == "__main__":
    main()
