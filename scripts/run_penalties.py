#!/usr/bin/env python3
"""
Apply daily late penalties to overdue installments.

Runs for one tenant, or every active tenant when --tenant is omitted. Safe to
re-run for the same day: installments already charged for the date are skipped.

Usage:
    python scripts/run_penalties.py
    python scripts/run_penalties.py --tenant acme --as-of 2026-10-01
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import date

from sqlalchemy import select

from microlend.api.deps import TenantContext
from microlend.core.context import set_tenant_id
from microlend.core.logging import configure_logging
from microlend.db.session import AsyncSessionLocal
from microlend.models.tenant import Tenant
from microlend.services import penalties

logger = logging.getLogger("microlend.scripts.run_penalties")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--tenant", help="Tenant id; defaults to every active tenant")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="ISO date, defaults to today")
    return parser.parse_args()


async def main() -> None:
    args = _parse_args()
    configure_logging()
    async with AsyncSessionLocal() as session:
        if args.tenant:
            tenant_ids = [args.tenant]
        else:
            stmt = select(Tenant.id).where(Tenant.status == "active").order_by(Tenant.id)
            tenant_ids = list((await session.execute(stmt)).scalars().all())

        total_rows = 0
        for tenant_id in tenant_ids:
            set_tenant_id(tenant_id)
            result = await penalties.apply_penalties(session, TenantContext(tenant_id=tenant_id), args.as_of)
            total_rows += result.rows_penalized
        logger.info("Penalties applied", extra={"tenants": len(tenant_ids), "rows_penalized": total_rows})


if __name__ == "__main__":
    asyncio.run(main())
