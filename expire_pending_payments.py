"""Fail pending payments older than PENDING_PAYMENT_TTL_HOURS.

Run periodically (cron, systemd timer). Checkouts abandoned before the gateway
reported anything would otherwise stay ``pending`` forever.
"""

import asyncio
import datetime

from server.config import PENDING_PAYMENT_TTL_HOURS
from server.db.session import SessionLocal
from server.payment_log import configure_logging
from server.services.reconciliation import expire_stale_payments


async def main() -> None:
    cutoff = datetime.datetime.utcnow() - datetime.timedelta(hours=PENDING_PAYMENT_TTL_HOURS)
    async with SessionLocal() as db:
        expired = await expire_stale_payments(db, cutoff)
    print(f"⌛ Просрочено платежей: {expired} (старше {cutoff:%d.%m.%Y %H:%M} UTC)")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(main())
