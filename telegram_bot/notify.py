import logging

from telegram import Bot

from server.config import TELEGRAM_BOT_TOKEN


async def send_telegram_message(chat_id: int, text: str, token: str = TELEGRAM_BOT_TOKEN) -> bool:
    """Send ``text`` to a Telegram chat. Returns False instead of raising."""
    if not token:
        logging.info("TELEGRAM_BOT_TOKEN is not set; skipping Telegram message for chat_id=%s", chat_id)
        return False
    try:
        bot = Bot(token=token)
        logging.info("Sending Telegram message: chat_id=%s", chat_id)
        await bot.send_message(chat_id=chat_id, text=text)
        return True
    except Exception:
        logging.exception("Failed to send Telegram message to chat_id=%s", chat_id)
        return False
