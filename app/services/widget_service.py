import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import ProviderConfigurationNotFoundError, WidgetNotFoundError
from app.core.logging import logger
from app.db.models import ProviderConfiguration, Widget, gen_embed_id
from app.schemas.widget import WidgetCreate, WidgetUpdate
from app.services.settings_service import PlatformConfig
from app.utils.redis_client import redis_client

CONFIG_CACHE_TTL_KEY = "widget.config_cache_ttl"
MAX_PER_PAGE = 100
WIDGET_GROUPS = ("design", "behavior", "placement")


def config_cache_key(embed_id: str) -> str:
    return f"cache:widget_config:{embed_id}"


class WidgetService:
    async def _check_provider(self, db: AsyncSession, tenant_id, configuration_id) -> None:
        if configuration_id is None:
            return
        result = await db.execute(
            select(ProviderConfiguration.id).where(
                ProviderConfiguration.id == configuration_id,
                ProviderConfiguration.tenant_id == tenant_id,
            )
        )
        if result.scalar_one_or_none() is None:
            raise ProviderConfigurationNotFoundError(str(configuration_id))

    async def list_widgets(
        self,
        db: AsyncSession,
        tenant_id,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: int = 15,
    ) -> Tuple[List[Widget], int]:
        per_page = max(1, min(per_page, MAX_PER_PAGE))
        page = max(1, page)

        stmt = select(Widget).where(Widget.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(Widget.status == status)
        if search:
            stmt = stmt.where(Widget.name.ilike(f"%{search}%"))

        total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
        result = await db.execute(
            stmt.order_by(Widget.created_at.desc()).offset((page - 1) * per_page).limit(per_page)
        )
        return list(result.scalars().all()), total

    async def get_widget(self, db: AsyncSession, tenant_id, widget_id) -> Widget:
        result = await db.execute(
            select(Widget)
            .options(selectinload(Widget.provider_configuration))
            .where(Widget.id == widget_id, Widget.tenant_id == tenant_id)
        )
        widget = result.scalars().first()
        if widget is None:
            raise WidgetNotFoundError(str(widget_id))
        return widget

    async def create_widget(
        self,
        db: AsyncSession,
        tenant_id,
        data: WidgetCreate,
        platform_config: Optional[PlatformConfig] = None,
    ) -> Widget:
        await self._check_provider(db, tenant_id, data.provider_configuration_id)

        defaults = (platform_config or PlatformConfig()).widget_defaults()
        widget = Widget(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            provider_configuration_id=data.provider_configuration_id,
            name=data.name,
            description=data.description,
            status=data.status,
            embed_id=gen_embed_id(),
        )
        # supplied groups are stored verbatim; missing ones take the platform defaults
        for group in WIDGET_GROUPS:
            value = getattr(data, group)
            setattr(widget, group, value if value is not None else defaults[group])

        db.add(widget)
        await db.commit()
        await db.refresh(widget)
        logger.info("widget_created", tenant_id=str(tenant_id), widget_id=str(widget.id), embed_id=widget.embed_id)
        return widget

    async def update_widget(self, db: AsyncSession, tenant_id, widget_id, data: WidgetUpdate) -> Widget:
        widget = await self.get_widget(db, tenant_id, widget_id)
        changes = data.model_dump(exclude_unset=True)

        if "provider_configuration_id" in changes:
            await self._check_provider(db, tenant_id, changes["provider_configuration_id"])
        for field, value in changes.items():
            if value is None and field in ("name", "status") + WIDGET_GROUPS:
                continue
            setattr(widget, field, value)

        await db.commit()
        await db.refresh(widget)
        await self.invalidate_cache(widget.embed_id)
        logger.info("widget_updated", widget_id=str(widget.id), fields=sorted(changes))
        return widget

    async def delete_widget(self, db: AsyncSession, tenant_id, widget_id) -> None:
        widget = await self.get_widget(db, tenant_id, widget_id)
        embed_id = widget.embed_id
        await db.delete(widget)
        await db.commit()
        await self.invalidate_cache(embed_id)
        logger.info("widget_deleted", widget_id=str(widget_id))

    async def duplicate_widget(self, db: AsyncSession, tenant_id, widget_id) -> Widget:
        source = await self.get_widget(db, tenant_id, widget_id)
        copy = Widget(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            provider_configuration_id=source.provider_configuration_id,
            name=f"{source.name} (Copy)",
            description=source.description,
            design=dict(source.design or {}),
            behavior=dict(source.behavior or {}),
            placement=dict(source.placement or {}),
            status="draft",
            embed_id=gen_embed_id(),
        )
        db.add(copy)
        await db.commit()
        await db.refresh(copy)
        logger.info("widget_duplicated", source_id=str(source.id), widget_id=str(copy.id))
        return copy

    def embed_code(self, widget: Widget, base_url: Optional[str] = None) -> Dict[str, Any]:
        base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        return {
            "embed_code": f'<script src="{base_url}/widget.js" data-widget-id="{widget.embed_id}"></script>',
            "embed_id": widget.embed_id,
            "instructions": [
                "Copy the embed code above",
                "Paste it before the closing </body> tag on your website",
                "The widget will automatically appear on your site",
                "Make sure your widget status is set to 'active'",
            ],
        }

    def public_config(self, widget: Widget) -> Dict[str, Any]:
        provider = widget.provider_configuration
        return {
            "id": widget.embed_id,
            "name": widget.name,
            "design": widget.design or {},
            "behavior": widget.behavior or {},
            "placement": widget.placement or {},
            "ai_provider": {"type": provider.provider_type, "model": provider.model} if provider else None,
        }

    async def get_public_config(
        self,
        db: AsyncSession,
        embed_id: str,
        platform_config: Optional[PlatformConfig] = None,
    ) -> Dict[str, Any]:
        """
        Configuration the embed loader fetches. Only active widgets are visible.
        """
        cache_key = config_cache_key(embed_id)
        cached_config = await redis_client.get_cache(cache_key)
        if cached_config:
            return cached_config

        result = await db.execute(
            select(Widget)
            .options(selectinload(Widget.provider_configuration))
            .where(Widget.embed_id == embed_id, Widget.status == "active")
        )
        widget = result.scalars().first()
        if widget is None:
            raise WidgetNotFoundError(embed_id)

        config = self.public_config(widget)
        ttl = (platform_config or PlatformConfig()).get(CONFIG_CACHE_TTL_KEY)
        if ttl and ttl > 0:
            await redis_client.set_cache(cache_key, config, ttl=ttl)
        return config

    async def invalidate_cache(self, embed_id: Optional[str] = None) -> int:
        """
        Drop cached public config for one widget, or for every widget when no embed id is given.
        """
        if embed_id:
            await redis_client.delete(config_cache_key(embed_id))
            return 1
        return await redis_client.delete_by_pattern(config_cache_key("*"))


widget_service = WidgetService()
