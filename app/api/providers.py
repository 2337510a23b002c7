from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_platform_config, http_error
from app.auth.api_key import require_tenant_api_key
from app.core.exceptions import WidgetPlatformError
from app.db.models import Tenant
from app.db.session import get_db
from app.llm.dispatcher import is_supported
from app.llm.registry import ProviderRegistry
from app.schemas.provider import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    ModelListResponse,
    ProviderConfigurationCreate,
    ProviderConfigurationOut,
    ProviderConfigurationUpdate,
    ProviderDescriptorOut,
)
from app.services.provider_service import provider_service
from app.services.settings_service import PlatformConfig

router = APIRouter()


@router.get("", response_model=List[ProviderConfigurationOut])
async def list_providers(
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    registry = ProviderRegistry(platform_config)
    configurations = await provider_service.list_configurations(db, tenant.id)
    return [provider_service.serialize(c, registry) for c in configurations]


@router.get("/available", response_model=List[ProviderDescriptorOut])
async def available_providers(
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    """
    Every provider type the registry describes, flagged with whether it can be
    dispatched and whether the tenant already configured it.
    """
    configured = {c.provider_type for c in await provider_service.list_configurations(db, tenant.id)}
    return [
        ProviderDescriptorOut(
            **descriptor.model_dump(exclude={"env_var"}),
            supported=is_supported(descriptor.provider_type),
            configured=descriptor.provider_type in configured,
        )
        for descriptor in ProviderRegistry(platform_config).list()
    ]


@router.post("", response_model=ProviderConfigurationOut, status_code=status.HTTP_201_CREATED)
async def create_provider(
    payload: ProviderConfigurationCreate,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    try:
        configuration = await provider_service.create_configuration(db, tenant.id, payload, platform_config)
    except WidgetPlatformError as e:
        raise http_error(e)
    return provider_service.serialize(configuration)


@router.post("/test-connection", response_model=ConnectionTestResponse)
async def test_connection(
    payload: ConnectionTestRequest,
    tenant: Tenant = Depends(require_tenant_api_key),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    try:
        return await provider_service.test_connection(payload, platform_config)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.get("/models/{provider_type}", response_model=ModelListResponse)
async def list_models(
    provider_type: str,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    try:
        models, source = await provider_service.list_models(db, tenant.id, provider_type, platform_config)
    except WidgetPlatformError as e:
        raise http_error(e)
    return {"provider_type": provider_type, "models": models, "source": source}


@router.get("/{configuration_id}", response_model=ProviderConfigurationOut)
async def get_provider(
    configuration_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        configuration = await provider_service.get_configuration(db, tenant.id, configuration_id)
    except WidgetPlatformError as e:
        raise http_error(e)
    return provider_service.serialize(configuration)


@router.put("/{configuration_id}", response_model=ProviderConfigurationOut)
async def update_provider(
    configuration_id: UUID,
    payload: ProviderConfigurationUpdate,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        configuration = await provider_service.update_configuration(db, tenant.id, configuration_id, payload)
    except WidgetPlatformError as e:
        raise http_error(e)
    return provider_service.serialize(configuration)


@router.delete("/{configuration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_provider(
    configuration_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        await provider_service.delete_configuration(db, tenant.id, configuration_id)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.post("/{configuration_id}/toggle-status", response_model=ProviderConfigurationOut)
async def toggle_provider_status(
    configuration_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    try:
        configuration = await provider_service.toggle_status(db, tenant.id, configuration_id)
    except WidgetPlatformError as e:
        raise http_error(e)
    return provider_service.serialize(configuration)


@router.post("/{configuration_id}/test", response_model=ConnectionTestResponse)
async def test_stored_provider(
    configuration_id: UUID,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    try:
        return await provider_service.test_stored(db, tenant.id, configuration_id, platform_config)
    except WidgetPlatformError as e:
        raise http_error(e)
