from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import http_error, require_internal_admin
from app.core.exceptions import WidgetPlatformError
from app.core.logging import logger
from app.db.session import get_db
from app.llm.registry import AVAILABLE_PROVIDERS_KEY, default_templates
from app.schemas.settings import ProviderTemplatesIn, SystemSettingIn, SystemSettingOut
from app.services.settings_service import PlatformConfig, settings_service
from app.services.widget_service import widget_service

router = APIRouter(dependencies=[Depends(require_internal_admin)])


@router.post("/cache-invalidate")
async def invalidate_widget_cache(
    embed_id: Optional[str] = Query(None, description="Embed id of the widget whose cache should be dropped; all widgets when omitted"),
):
    """
    Clear cached public widget configuration. Called by the management side
    when widget settings change outside this service.
    """
    deleted = await widget_service.invalidate_cache(embed_id)
    logger.info("internal_cache_invalidated", embed_id=embed_id or "*", deleted=deleted)
    return {"status": "success", "message": f"Cache invalidated for {embed_id or 'all widgets'}"}


@router.get("/settings", response_model=List[SystemSettingOut])
async def list_settings(
    category: Optional[str] = None,
    public: bool = False,
    db: AsyncSession = Depends(get_db),
):
    if public:
        return await settings_service.get_public_settings(db)
    if category:
        return await settings_service.get_by_category(db, category)
    return await settings_service.list_settings(db)


@router.post("/settings/initialize")
async def initialize_settings(db: AsyncSession = Depends(get_db)):
    created = await settings_service.initialize_defaults(db)
    return {"status": "success", "created": created}


@router.get("/settings/{key}/resolved")
async def resolve_setting(key: str, db: AsyncSession = Depends(get_db)):
    """
    Effective value after database, environment and default resolution.
    """
    config = await PlatformConfig.load(db)
    return {"key": key, "value": config.get(key)}


@router.put("/settings/{key}", response_model=SystemSettingOut)
async def put_setting(key: str, payload: SystemSettingIn, db: AsyncSession = Depends(get_db)):
    try:
        return await settings_service.set(
            db,
            key,
            payload.value,
            type=payload.type,
            description=payload.description,
            category=payload.category,
            is_public=payload.is_public,
        )
    except WidgetPlatformError as e:
        raise http_error(e)


@router.delete("/settings/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_setting(key: str, db: AsyncSession = Depends(get_db)):
    if not await settings_service.delete(db, key):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Setting '{key}' not found")


@router.get("/provider-templates")
async def get_provider_templates(db: AsyncSession = Depends(get_db)):
    templates = await settings_service.get(db, AVAILABLE_PROVIDERS_KEY)
    if templates:
        return {"source": "database", "templates": templates}
    return {"source": "default", "templates": default_templates()}


@router.put("/provider-templates")
async def replace_provider_templates(payload: ProviderTemplatesIn, db: AsyncSession = Depends(get_db)):
    if not payload.templates:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="At least one template is required")
    await settings_service.set(
        db,
        AVAILABLE_PROVIDERS_KEY,
        payload.templates,
        type="json",
        description="Available AI provider templates",
        category="providers",
    )
    return {"status": "success", "templates": payload.templates}


@router.post("/provider-templates/reset")
async def reset_provider_templates(db: AsyncSession = Depends(get_db)):
    templates = default_templates()
    await settings_service.set(
        db,
        AVAILABLE_PROVIDERS_KEY,
        templates,
        type="json",
        description="Available AI provider templates",
        category="providers",
    )
    return {"status": "success", "templates": templates}
