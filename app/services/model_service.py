import hashlib
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AIModelNotFoundError, UnsupportedProviderError, ValidationError
from app.core.logging import logger
from app.db.models import AIModel
from app.llm.base import ProviderCallConfig, ProviderResult
from app.llm.dispatcher import get_provider, is_supported
from app.llm.registry import ProviderRegistry
from app.schemas.model import AIModelCreate, AIModelUpdate, ModelTestRequest, ModelTestResponse
from app.services.provider_service import provider_service
from app.services.settings_service import PlatformConfig
from app.utils.redis_client import redis_client

MAX_PER_PAGE = 100
TEST_PROMPT = "Respond with a short greeting."
MODEL_LIST_CACHE_TTL = 3600

SORT_COLUMNS = {
    "name": AIModel.name,
    "provider_type": AIModel.provider_type,
    "created_at": AIModel.created_at,
    "is_active": AIModel.is_active,
    "is_featured": AIModel.is_featured,
}


def model_list_cache_key(provider_type: str, api_key: str) -> str:
    # the credential only appears hashed
    digest = hashlib.sha256(api_key.encode()).hexdigest()[:16]
    return f"cache:models:{provider_type}:{digest}"


def empty_metrics() -> Dict[str, Any]:
    return {
        "usage_count": 0,
        "total_response_time": 0.0,
        "avg_response_time": 0.0,
        "total_tokens": 0,
        "last_used": None,
    }


def record_usage(metrics: Optional[Dict[str, Any]], response_time_ms: Optional[float],
                 total_tokens: Optional[int], now: datetime) -> Dict[str, Any]:
    """
    Fold one call into a catalog entry's running metrics and return the new dict.
    """
    updated = {**empty_metrics(), **(metrics or {})}
    updated["usage_count"] = int(updated["usage_count"] or 0) + 1
    if response_time_ms is not None:
        updated["total_response_time"] = float(updated["total_response_time"] or 0) + response_time_ms
        updated["avg_response_time"] = round(updated["total_response_time"] / updated["usage_count"], 2)
    if total_tokens:
        updated["total_tokens"] = int(updated["total_tokens"] or 0) + total_tokens
    updated["last_used"] = now.isoformat()
    return updated


class ModelService:
    # catalog CRUD

    async def list_models(
        self,
        db: AsyncSession,
        tenant_id,
        provider_type: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_direction: str = "desc",
        page: int = 1,
        per_page: int = 10,
    ) -> Tuple[List[AIModel], int]:
        per_page = max(1, min(per_page, MAX_PER_PAGE))
        page = max(1, page)

        stmt = select(AIModel).where(AIModel.tenant_id == tenant_id)
        if provider_type:
            stmt = stmt.where(AIModel.provider_type == provider_type)
        if is_active is not None:
            stmt = stmt.where(AIModel.is_active == is_active)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                AIModel.name.ilike(pattern),
                AIModel.model_id.ilike(pattern),
                AIModel.description.ilike(pattern),
            ))

        column = SORT_COLUMNS.get(sort_by, AIModel.created_at)
        order = column.asc() if sort_direction == "asc" else column.desc()

        total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
        result = await db.execute(stmt.order_by(order).offset((page - 1) * per_page).limit(per_page))
        return list(result.scalars().all()), total

    async def get_model(self, db: AsyncSession, tenant_id, catalog_id) -> AIModel:
        result = await db.execute(
            select(AIModel).where(AIModel.id == catalog_id, AIModel.tenant_id == tenant_id)
        )
        model = result.scalars().first()
        if model is None:
            raise AIModelNotFoundError(str(catalog_id))
        return model

    async def _find_duplicate(self, db: AsyncSession, tenant_id, provider_type: str,
                              model_id: str) -> Optional[AIModel]:
        result = await db.execute(
            select(AIModel).where(
                AIModel.tenant_id == tenant_id,
                AIModel.provider_type == provider_type,
                AIModel.model_id == model_id,
            )
        )
        return result.scalars().first()

    async def _check_configuration(self, db: AsyncSession, tenant_id, configuration_id,
                                   provider_type: str) -> None:
        configuration = await provider_service.get_configuration(db, tenant_id, configuration_id)
        if configuration.provider_type != provider_type:
            raise ValidationError(
                f"provider configuration is for {configuration.provider_type}, not {provider_type}",
                field="provider_configuration_id",
            )

    async def create_model(self, db: AsyncSession, tenant_id, data: AIModelCreate) -> AIModel:
        if not is_supported(data.provider_type):
            raise UnsupportedProviderError(data.provider_type)
        if data.provider_configuration_id is not None:
            await self._check_configuration(db, tenant_id, data.provider_configuration_id, data.provider_type)
        if await self._find_duplicate(db, tenant_id, data.provider_type, data.model_id) is not None:
            raise ValidationError(
                f"{data.provider_type} model '{data.model_id}' is already in the catalog", field="model_id"
            )

        model = AIModel(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            performance_metrics=empty_metrics(),
            **data.model_dump(),
        )
        db.add(model)
        await db.commit()
        await db.refresh(model)
        logger.info("ai_model_created", tenant_id=str(tenant_id), provider=model.provider_type,
                    model=model.model_id)
        return model

    async def update_model(self, db: AsyncSession, tenant_id, catalog_id, data: AIModelUpdate) -> AIModel:
        model = await self.get_model(db, tenant_id, catalog_id)
        changes = data.model_dump(exclude_unset=True)

        if changes.get("provider_configuration_id") is not None:
            await self._check_configuration(db, tenant_id, changes["provider_configuration_id"], model.provider_type)
        new_model_id = changes.get("model_id")
        if new_model_id and new_model_id != model.model_id:
            if await self._find_duplicate(db, tenant_id, model.provider_type, new_model_id) is not None:
                raise ValidationError(
                    f"{model.provider_type} model '{new_model_id}' is already in the catalog", field="model_id"
                )

        for field, value in changes.items():
            # null clears only the optional columns
            if value is None and field not in ("provider_configuration_id", "description", "system_prompt"):
                continue
            setattr(model, field, value)

        await db.commit()
        await db.refresh(model)
        logger.info("ai_model_updated", catalog_id=str(model.id), fields=sorted(changes))
        return model

    async def delete_model(self, db: AsyncSession, tenant_id, catalog_id) -> None:
        model = await self.get_model(db, tenant_id, catalog_id)
        await db.delete(model)
        await db.commit()
        logger.info("ai_model_deleted", tenant_id=str(tenant_id), catalog_id=str(catalog_id))

    async def toggle(self, db: AsyncSession, tenant_id, catalog_id, flag: str) -> AIModel:
        model = await self.get_model(db, tenant_id, catalog_id)
        setattr(model, flag, not getattr(model, flag))
        await db.commit()
        await db.refresh(model)
        logger.info("ai_model_toggled", catalog_id=str(model.id), flag=flag, value=getattr(model, flag))
        return model

    async def update_metrics(self, db: AsyncSession, model: AIModel, result: ProviderResult) -> AIModel:
        model.performance_metrics = record_usage(
            model.performance_metrics,
            result.response_time_ms,
            result.usage.total_tokens if result.usage else None,
            datetime.now(timezone.utc),
        )
        await db.commit()
        return model

    # discovery / testing

    async def fetch_available(
        self,
        db: AsyncSession,
        tenant_id,
        provider_type: str,
        api_key: Optional[str] = None,
        platform_config: Optional[PlatformConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> Tuple[List[str], str]:
        """
        Model ids the vendor offers. Live listings for an explicit credential
        are cached for an hour.
        """
        cache_key = model_list_cache_key(provider_type, api_key) if api_key else None
        if cache_key:
            cached = await redis_client.get_cache(cache_key)
            if cached:
                return cached["models"], "live"

        models, source = await provider_service.list_models(
            db, tenant_id, provider_type, platform_config, http_client=http_client, api_key=api_key
        )
        if cache_key and source == "live":
            await redis_client.set_cache(cache_key, {"models": models}, ttl=MODEL_LIST_CACHE_TTL)
        return models, source

    async def _credential(self, db: AsyncSession, tenant_id, provider_type: str,
                          registry: ProviderRegistry) -> Optional[str]:
        configuration = await provider_service.get_by_type(db, tenant_id, provider_type)
        if configuration is not None:
            api_key, _ = provider_service.resolve_credential(configuration, registry)
            return api_key
        return provider_service.env_credential(provider_type, registry)

    async def _run_test(self, call_config: ProviderCallConfig,
                        http_client: Optional[httpx.AsyncClient]) -> Tuple[ModelTestResponse, ProviderResult]:
        provider = get_provider(call_config, http_client=http_client)
        result = await provider.generate_response(TEST_PROMPT, [])
        logger.info("ai_model_tested", provider=call_config.provider_type, model=provider.model,
                    success=result.success)
        response = ModelTestResponse(
            success=result.success,
            message="Model test successful" if result.success else f"Model test failed: {result.error}",
            provider=call_config.provider_type,
            model=provider.model,
            response=result.content,
            response_time_ms=result.response_time_ms,
            token_usage=result.usage,
        )
        return response, result

    async def test_model(
        self,
        db: AsyncSession,
        tenant_id,
        data: ModelTestRequest,
        platform_config: Optional[PlatformConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> ModelTestResponse:
        """
        Send a short prompt to a model that is not necessarily in the catalog.
        """
        registry = ProviderRegistry(platform_config, provider_service.settings)
        api_key = data.api_key or await self._credential(db, tenant_id, data.provider_type, registry)
        call_config = ProviderCallConfig(
            provider_type=data.provider_type,
            api_key=api_key,
            model=data.model_id,
            temperature=data.temperature,
            max_tokens=data.max_tokens,
            system_prompt=data.system_prompt,
            template=registry.resolve(data.provider_type),
        )
        response, _ = await self._run_test(call_config, http_client)
        return response

    async def test_stored(
        self,
        db: AsyncSession,
        tenant_id,
        catalog_id,
        platform_config: Optional[PlatformConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> ModelTestResponse:
        """
        Test a catalog entry with its own parameters; successful calls are recorded in its metrics.
        """
        model = await self.get_model(db, tenant_id, catalog_id)
        registry = ProviderRegistry(platform_config, provider_service.settings)

        if model.provider_configuration_id is not None:
            configuration = await provider_service.get_configuration(db, tenant_id, model.provider_configuration_id)
            api_key, _ = provider_service.resolve_credential(configuration, registry)
            advanced = dict(configuration.advanced_settings or {})
        else:
            api_key = await self._credential(db, tenant_id, model.provider_type, registry)
            advanced = {}
        advanced.update(model.configuration or {})

        call_config = ProviderCallConfig(
            provider_type=model.provider_type,
            api_key=api_key,
            model=model.model_id,
            temperature=model.temperature,
            max_tokens=model.max_tokens,
            system_prompt=model.system_prompt,
            advanced_settings=advanced,
            template=registry.resolve(model.provider_type),
        )
        response, result = await self._run_test(call_config, http_client)
        if result.success:
            await self.update_metrics(db, model, result)
        return response


model_service = ModelService()
