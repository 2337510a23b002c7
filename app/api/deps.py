from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AIModelNotFoundError,
    ConfigurationError,
    ProviderConfigurationNotFoundError,
    ProviderNotFoundError,
    UnsupportedProviderError,
    ValidationError,
    WidgetNotFoundError,
    WidgetPlatformError,
)
from app.core.logging import logger
from app.db.session import get_db
from app.services.settings_service import PlatformConfig

NOT_FOUND_ERRORS = (
    WidgetNotFoundError,
    ProviderNotFoundError,
    ProviderConfigurationNotFoundError,
    AIModelNotFoundError,
)


def http_error(e: WidgetPlatformError) -> HTTPException:
    """
    Map a domain error onto the HTTP response the routers return.
    """
    if isinstance(e, NOT_FOUND_ERRORS):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ValidationError):
        detail = {"message": str(e), "field": e.field} if e.field else str(e)
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)
    if isinstance(e, (UnsupportedProviderError, ConfigurationError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.error("unmapped_domain_error", error_type=type(e).__name__, error=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")


async def get_platform_config(db: AsyncSession = Depends(get_db)) -> PlatformConfig:
    return await PlatformConfig.load(db)


async def require_internal_admin(
    internal_admin_header: Optional[str] = Header(None, alias="INTERNAL_ADMIN_HEADER", convert_underscores=False)
) -> None:
    if not settings.INTERNAL_ADMIN_HEADER or internal_admin_header != settings.INTERNAL_ADMIN_HEADER:
        logger.warning("internal_admin_rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
