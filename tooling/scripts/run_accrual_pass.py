#!/usr/bin/env python3
"""Run a single accrual reconciliation pass for cron/CI workflows."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Advance NEW/PROCESSING orders through one accrual pass")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Workers per stage (defaults to ACCRUAL_STAGE_CONCURRENCY).",
    )
    parser.add_argument(
        "--seed-order",
        action="append",
        default=[],
        metavar="ORDER[:USER]",
        help="Register an order in NEW state before the pass. May be repeated.",
    )
    parser.add_argument(
        "--fail-on-error",
        action="store_true",
        help="Exit with status 1 when any record failed to advance.",
    )
    return parser.parse_args()


async def _run_once(args: argparse.Namespace) -> int:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from loyalty_accrual.core.settings import settings  # type: ignore import-position
    from loyalty_accrual.db.session import engine, init_models  # type: ignore import-position
    from loyalty_accrual.services.accrual import (  # type: ignore import-position
        RandomAccrualOracle,
        ReconciliationLoop,
    )
    from loyalty_accrual.services.orders import SqlAlchemyOrderStore  # type: ignore import-position

    await init_models(engine)
    store = SqlAlchemyOrderStore.from_engine(engine)
    try:
        for entry in args.seed_order:
            order_id, _, user_id = entry.partition(":")
            await store.create_order(order_id, user_id or "cli")
            logger.info("Seeded order", order_id=order_id)

        loop = ReconciliationLoop(
            store,
            RandomAccrualOracle.from_settings(settings),
            concurrency=args.concurrency,
        )
        summary = await loop.run_once()
        logger.info("Accrual pass complete", summary=summary.as_dict())
        return summary.failed
    finally:
        await engine.dispose()


def main() -> int:
    args = parse_args()
    failed = asyncio.run(_run_once(args))
    if failed and args.fail_on_error:
        logger.error("Accrual pass reported failures", failed=failed)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
