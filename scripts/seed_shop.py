#!/usr/bin/env python3
"""Create the shop schema and load demo users, products, carts and orders."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from dataclasses import asdict

from sqlalchemy import func, select

from services.common import create_schema, dispose_engines, drop_schema, get_session_factory, lifespan_session
from services.shop_service.app.models import Base, User
from services.shop_service.app.seed import seed_demo_data

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./shop_service.db"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the shop service database with demo data")
    parser.add_argument(
        "--database-url",
        default=os.getenv("SERVICE_DATABASE_URL", DEFAULT_DATABASE_URL),
        help="SQLAlchemy async URL (default: %(default)s or SERVICE_DATABASE_URL)",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop every shop table before seeding",
    )
    return parser.parse_args()


async def _seed(database_url: str, *, reset: bool) -> dict[str, object]:
    if reset:
        await drop_schema(database_url, Base)
    await create_schema(database_url, Base)

    session_factory = get_session_factory(database_url)
    async with lifespan_session(session_factory) as session:
        existing = (await session.execute(select(func.count(User.id)))).scalar_one()
        if existing:
            return {"seeded": False, "reason": f"database already holds {existing} users; use --reset"}
        summary = await seed_demo_data(session)
    return {"seeded": True, **asdict(summary)}


async def main_async() -> int:
    args = parse_args()
    try:
        report = await _seed(args.database_url, reset=args.reset)
    finally:
        await dispose_engines()
    print(json.dumps(report, indent=2, sort_keys=True))
    return 0


def main() -> None:
    try:
        exit_code = asyncio.run(main_async())
    except Exception as exc:
        print(json.dumps({"error": str(exc)}))
        exit_code = 1
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
