from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_platform_config, http_error
from app.auth.api_key import require_tenant_api_key
from app.core.exceptions import WidgetPlatformError
from app.db.models import Tenant
from app.db.session import get_db
from app.schemas.widget import (
    EmbedCodeResponse,
    WidgetCreate,
    WidgetListResponse,
    WidgetOut,
    WidgetStatus,
    WidgetUpdate,
)
from app.services.settings_service import PlatformConfig
from app.services.widget_service import MAX_PER_PAGE, widget_service

router = APIRouter()


@router.get("", response_model=WidgetListResponse)
async def list_widgets(
    status_filter: Optional[WidgetStatus] = Query(None, alias="status"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=MAX_PER_PAGE),
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    widgets, total = await widget_service.list_widgets(
        db, tenant.id, status=status_filter, search=search, page=page, per_page=per_page
    )
    return {"items": widgets, "total": total, "page": page, "per_page": per_page}


@router.get("/defaults")
async def widget_defaults(
    tenant: Tenant = Depends(require_tenant_api_key),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    return platform_config.widget_defaults()


@router.post("", response_model=WidgetOut, status_code=status.HTTP_201_CREATED)
async def create_widget(
    payload: WidgetCreate,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    try:
        return await widget_service.create_widget(db, tenant.id, payload, platform_config)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.get("/{widget_id}", response_model=WidgetOut)
async def get_widget(
    widget_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await widget_service.get_widget(db, tenant.id, widget_id)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.put("/{widget_id}", response_model=WidgetOut)
async def update_widget(
    widget_id: UUID,
    payload: WidgetUpdate,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await widget_service.update_widget(db, tenant.id, widget_id, payload)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.delete("/{widget_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_widget(
    widget_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        await widget_service.delete_widget(db, tenant.id, widget_id)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.get("/{widget_id}/embed-code", response_model=EmbedCodeResponse)
async def get_embed_code(
    widget_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        widget = await widget_service.get_widget(db, tenant.id, widget_id)
    except WidgetPlatformError as e:
        raise http_error(e)
    return widget_service.embed_code(widget)


@router.post("/{widget_id}/duplicate", response_model=WidgetOut, status_code=status.HTTP_201_CREATED)
async def duplicate_widget(
    widget_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await widget_service.duplicate_widget(db, tenant.id, widget_id)
    except WidgetPlatformError as e:
        raise http_error(e)
