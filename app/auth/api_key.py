from datetime import datetime, timezone
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import logger
from app.core.security import api_key_lookup_prefix, generate_api_key, hash_api_key, verify_api_key
from app.db.models import ApiKey, Tenant
from app.db.session import get_db


async def require_tenant_api_key(
    x_api_key: Optional[str] = Header(None, alias="x-api-key"),
    db: AsyncSession = Depends(get_db)
) -> Tenant:
    """
    Resolve the tenant that owns the dashboard API key.
    """
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key"
        )

    # Candidate rows share the lookup prefix; the Argon2 hash decides
    result = await db.execute(
        select(ApiKey, Tenant)
        .join(Tenant, ApiKey.tenant_id == Tenant.id)
        .where(ApiKey.key_prefix == api_key_lookup_prefix(x_api_key), ApiKey.is_active.is_(True))
    )

    match = None
    for api_key, tenant in result.all():
        if verify_api_key(x_api_key, api_key.api_key_hash):
            match = (api_key, tenant)
            break

    if match is None:
        logger.warning("api_key_rejected", key_prefix=api_key_lookup_prefix(x_api_key))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key"
        )

    api_key, tenant = match
    if not tenant.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant is inactive"
        )

    api_key.last_used_at = datetime.now(timezone.utc)
    await db.commit()
    return tenant


async def create_api_key(db: AsyncSession, tenant_id, name: Optional[str] = None) -> Tuple[str, ApiKey]:
    """
    Issue a new key for a tenant. The raw key is returned once and never stored.
    """
    raw_key = generate_api_key()
    api_key = ApiKey(
        tenant_id=tenant_id,
        name=name,
        api_key_hash=hash_api_key(raw_key),
        key_prefix=api_key_lookup_prefix(raw_key),
    )
    db.add(api_key)
    await db.commit()
    await db.refresh(api_key)
    logger.info("api_key_created", tenant_id=str(tenant_id), key_prefix=api_key.key_prefix)
    return raw_key, api_key
