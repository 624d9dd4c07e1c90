import asyncio
import logging

from sqlalchemy import select

from microlend.core.security import get_password_hash
from microlend.core.settings import settings
from microlend.db.session import AsyncSessionLocal
from microlend.models.tenant import Tenant
from microlend.models.user import User
from microlend.services import authz, entitlements, ledger

logger = logging.getLogger(__name__)

DEFAULT_PLAN_CODE = "basic"


async def init_db() -> None:
    """
    Seed plans, the default tenant with its chart of accounts and system roles,
    and an initial administrator.
    """
    async with AsyncSessionLocal() as session:
        logger.info("Seeding database")
        plans = await entitlements.seed_plans(session, currency=settings.default_currency)

        tenant_id = settings.default_tenant_id
        tenant = (await session.execute(select(Tenant).where(Tenant.id == tenant_id))).scalar_one_or_none()
        if tenant is None:
            tenant = Tenant(
                id=tenant_id,
                name=tenant_id.replace("-", " ").title(),
                status="active",
                plan_id=plans[DEFAULT_PLAN_CODE].id,
            )
            session.add(tenant)
            await session.flush()
            logger.info("Default tenant created", extra={"plan_code": DEFAULT_PLAN_CODE})

        await ledger.seed_chart_of_accounts(session, tenant_id)
        await session.commit()
        roles = await authz.seed_system_roles(session, tenant_id)

        stmt = select(User).where(User.email == settings.seed_admin_email, User.tenant_id == tenant_id)
        user = (await session.execute(stmt)).scalar_one_or_none()
        if not user:
            user = User(
                tenant_id=tenant_id,
                email=settings.seed_admin_email,
                hashed_password=get_password_hash(settings.seed_admin_password),
                is_active=True,
                is_superuser=True,
                token_version=0,
                full_name=settings.seed_admin_full_name,
            )
            session.add(user)
            await session.commit()
            logger.info("Admin user created")
        else:
            logger.info("Admin user already exists")
        await authz.ensure_user_in_role(session, tenant_id, user.id, roles["ADMIN"])


if __name__ == "__main__":
    asyncio.run(init_db())
