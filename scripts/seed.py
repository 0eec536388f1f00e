"""Seed demo parties and funded wallets for local settlement runs."""
from __future__ import annotations

import asyncio
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from sqlalchemy import select

from settlement.config import get_settings
from settlement.db import get_sessionmaker, init_engine
from settlement.models import Tier, UserAccount
from settlement.services.idempotency import operation_key
from settlement.services.ledger import DatabaseWalletLedger

PARTIES = [
    ("buyer-acme", "procurement@acme.example", Tier.PRO, Decimal("1000000")),
    ("seller-steelco", "sales@steelco.example", Tier.FREE, Decimal("0")),
    ("buyer-small", "owner@small.example", Tier.FREE, Decimal("25000")),
]


async def _seed() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")
    init_engine()
    session = get_sessionmaker()()
    ledger = DatabaseWalletLedger(session)

    try:
        for ref, email, tier, opening in PARTIES:
            if session.scalars(select(UserAccount).where(UserAccount.ref == ref)).first() is None:
                session.add(UserAccount(ref=ref, email=email, tier=tier))
                session.commit()
            if opening > 0:
                # seed credits are keyed by ref so re-running the script is a no-op
                await ledger.credit(
                    ref,
                    opening,
                    idempotency_key=operation_key("seed", 0, ref),
                    currency=settings.DEFAULT_CURRENCY,
                )
        if settings.PLATFORM_WALLET_REF:
            print(f"Platform wallet: {settings.PLATFORM_WALLET_REF}")
        print("Seed data inserted.")
    finally:
        session.close()


def main() -> None:
    asyncio.run(_seed())


if __name__ == "__main__":
    main()
