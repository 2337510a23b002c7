import uuid
from typing import List, Optional, Tuple

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    ConfigurationError,
    ProviderConfigurationNotFoundError,
    UnsupportedProviderError,
    UpstreamError,
)
from app.core.logging import logger
from app.core.security import decrypt_credential, encrypt_credential, mask_api_key
from app.db.models import ProviderConfiguration
from app.llm.base import ConnectionTestResult, ProviderCallConfig
from app.llm.dispatcher import get_provider, is_supported
from app.llm.registry import ProviderRegistry
from app.schemas.provider import (
    ConnectionTestRequest,
    ProviderConfigurationCreate,
    ProviderConfigurationOut,
    ProviderConfigurationUpdate,
)
from app.services.settings_service import PlatformConfig

VERIFY_CONNECTION_KEY = "providers.verify_connection"

# Columns an explicit null in an update leaves untouched
NON_NULLABLE_FIELDS = ("name", "model", "temperature", "max_tokens", "is_active", "advanced_settings")


class ProviderService:
    def __init__(self, app_settings=settings):
        self.settings = app_settings

    # credentials

    def encrypt(self, api_key: Optional[str]) -> Optional[str]:
        if not api_key:
            return None
        return encrypt_credential(api_key, self.settings.ENCRYPTION_KEY)

    def decrypt(self, configuration: ProviderConfiguration) -> Optional[str]:
        if not configuration.api_key:
            return None
        return decrypt_credential(configuration.api_key, self.settings.ENCRYPTION_KEY)

    def env_credential(self, provider_type: str, registry: Optional[ProviderRegistry] = None) -> Optional[str]:
        registry = registry or ProviderRegistry(settings=self.settings)
        if provider_type not in registry:
            return None
        return self.settings.env_credential(registry.get(provider_type).env_var)

    def resolve_credential(self, configuration: ProviderConfiguration,
                           registry: Optional[ProviderRegistry] = None) -> Tuple[Optional[str], bool]:
        """
        Returns (credential, from_env). Stored credentials win over env fallbacks.
        """
        stored = self.decrypt(configuration)
        if stored:
            return stored, False
        env_value = self.env_credential(configuration.provider_type, registry)
        return env_value, env_value is not None

    def to_call_config(self, configuration: ProviderConfiguration,
                       registry: Optional[ProviderRegistry] = None) -> ProviderCallConfig:
        registry = registry or ProviderRegistry(settings=self.settings)
        api_key, _ = self.resolve_credential(configuration, registry)
        return ProviderCallConfig(
            provider_type=configuration.provider_type,
            api_key=api_key,
            model=configuration.model,
            temperature=configuration.temperature,
            max_tokens=configuration.max_tokens,
            system_prompt=configuration.system_prompt,
            advanced_settings=dict(configuration.advanced_settings or {}),
            configuration_id=str(configuration.id),
            template=registry.resolve(configuration.provider_type),
        )

    def serialize(self, configuration: ProviderConfiguration,
                  registry: Optional[ProviderRegistry] = None) -> ProviderConfigurationOut:
        try:
            stored = self.decrypt(configuration)
        except ConfigurationError as e:
            logger.warning("credential_decrypt_failed", configuration_id=str(configuration.id), error=str(e))
            stored = None
        uses_env = not stored and self.env_credential(configuration.provider_type, registry) is not None

        return ProviderConfigurationOut(
            id=configuration.id,
            provider_type=configuration.provider_type,
            name=configuration.name,
            api_key_masked=mask_api_key(stored) if stored else ("********" if configuration.api_key else None),
            has_api_key=bool(configuration.api_key),
            uses_env_credential=uses_env,
            model=configuration.model,
            temperature=configuration.temperature,
            max_tokens=configuration.max_tokens,
            system_prompt=configuration.system_prompt,
            advanced_settings=configuration.advanced_settings or {},
            is_active=configuration.is_active,
            created_at=configuration.created_at,
            updated_at=configuration.updated_at,
        )

    # CRUD

    async def list_configurations(self, db: AsyncSession, tenant_id) -> List[ProviderConfiguration]:
        result = await db.execute(
            select(ProviderConfiguration)
            .where(ProviderConfiguration.tenant_id == tenant_id)
            .order_by(ProviderConfiguration.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_configuration(self, db: AsyncSession, tenant_id, configuration_id) -> ProviderConfiguration:
        result = await db.execute(
            select(ProviderConfiguration).where(
                ProviderConfiguration.id == configuration_id,
                ProviderConfiguration.tenant_id == tenant_id,
            )
        )
        configuration = result.scalars().first()
        if configuration is None:
            raise ProviderConfigurationNotFoundError(str(configuration_id))
        return configuration

    async def get_by_type(self, db: AsyncSession, tenant_id, provider_type: str) -> Optional[ProviderConfiguration]:
        result = await db.execute(
            select(ProviderConfiguration).where(
                ProviderConfiguration.tenant_id == tenant_id,
                ProviderConfiguration.provider_type == provider_type,
            )
        )
        return result.scalars().first()

    async def create_configuration(
        self,
        db: AsyncSession,
        tenant_id,
        data: ProviderConfigurationCreate,
        platform_config: Optional[PlatformConfig] = None,
    ) -> ProviderConfiguration:
        """
        Create the tenant's configuration for a provider type, or overwrite the existing one.
        """
        if not is_supported(data.provider_type):
            raise UnsupportedProviderError(data.provider_type)

        registry = ProviderRegistry(platform_config, self.settings)
        descriptor = registry.get(data.provider_type) if data.provider_type in registry else None
        model = data.model or (descriptor.default_model if descriptor else None)
        if not model:
            raise ConfigurationError(f"No model given and no default model known for {data.provider_type}")

        call_config = ProviderCallConfig(
            provider_type=data.provider_type,
            model=model,
            temperature=data.temperature,
            max_tokens=data.max_tokens,
            advanced_settings=data.advanced_settings,
        )
        call_config.validate()

        configuration = await self.get_by_type(db, tenant_id, data.provider_type)
        created = configuration is None
        if created:
            configuration = ProviderConfiguration(
                id=uuid.uuid4(), tenant_id=tenant_id, provider_type=data.provider_type
            )
            db.add(configuration)

        configuration.name = data.name or (descriptor.name if descriptor else data.provider_type)
        if data.api_key is not None or created:
            configuration.api_key = self.encrypt(data.api_key)
        configuration.model = model
        configuration.temperature = data.temperature
        configuration.max_tokens = data.max_tokens
        configuration.system_prompt = data.system_prompt
        configuration.advanced_settings = data.advanced_settings
        configuration.is_active = data.is_active

        await db.commit()
        await db.refresh(configuration)
        logger.info(
            "provider_configuration_saved",
            tenant_id=str(tenant_id),
            provider=data.provider_type,
            created=created,
        )
        return configuration

    async def update_configuration(
        self,
        db: AsyncSession,
        tenant_id,
        configuration_id,
        data: ProviderConfigurationUpdate,
    ) -> ProviderConfiguration:
        configuration = await self.get_configuration(db, tenant_id, configuration_id)
        changes = data.model_dump(exclude_unset=True)

        if "api_key" in changes:
            configuration.api_key = self.encrypt(changes.pop("api_key"))
        for field, value in changes.items():
            if value is None and field in NON_NULLABLE_FIELDS:
                continue
            setattr(configuration, field, value)

        ProviderCallConfig(
            provider_type=configuration.provider_type,
            model=configuration.model,
            temperature=configuration.temperature,
            max_tokens=configuration.max_tokens,
            advanced_settings=configuration.advanced_settings,
        ).validate()

        await db.commit()
        await db.refresh(configuration)
        logger.info("provider_configuration_updated", tenant_id=str(tenant_id),
                    configuration_id=str(configuration.id), fields=sorted(changes))
        return configuration

    async def delete_configuration(self, db: AsyncSession, tenant_id, configuration_id) -> None:
        configuration = await self.get_configuration(db, tenant_id, configuration_id)
        # widgets pointing here keep existing with a NULL reference
        await db.delete(configuration)
        await db.commit()
        logger.info("provider_configuration_deleted", tenant_id=str(tenant_id),
                    configuration_id=str(configuration_id))

    async def toggle_status(self, db: AsyncSession, tenant_id, configuration_id) -> ProviderConfiguration:
        configuration = await self.get_configuration(db, tenant_id, configuration_id)
        configuration.is_active = not configuration.is_active
        await db.commit()
        await db.refresh(configuration)
        logger.info("provider_configuration_toggled", configuration_id=str(configuration.id),
                    is_active=configuration.is_active)
        return configuration

    # connection tests / model discovery

    async def test_connection(
        self,
        data: ConnectionTestRequest,
        platform_config: Optional[PlatformConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> ConnectionTestResult:
        """
        Test an ephemeral configuration that has not been saved.
        """
        call_config = ProviderCallConfig(
            provider_type=data.provider_type,
            api_key=data.api_key,
            model=data.model,
            temperature=data.temperature,
            max_tokens=data.max_tokens,
            advanced_settings=data.advanced_settings,
            template=ProviderRegistry(platform_config, self.settings).resolve(data.provider_type),
        )
        return await self._run_test(call_config, platform_config, http_client)

    async def test_stored(
        self,
        db: AsyncSession,
        tenant_id,
        configuration_id,
        platform_config: Optional[PlatformConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> ConnectionTestResult:
        configuration = await self.get_configuration(db, tenant_id, configuration_id)
        registry = ProviderRegistry(platform_config, self.settings)
        return await self._run_test(self.to_call_config(configuration, registry), platform_config, http_client)

    async def _run_test(
        self,
        call_config: ProviderCallConfig,
        platform_config: Optional[PlatformConfig],
        http_client: Optional[httpx.AsyncClient],
    ) -> ConnectionTestResult:
        verify = bool(platform_config.get(VERIFY_CONNECTION_KEY)) if platform_config is not None else False
        provider = get_provider(call_config, http_client=http_client, verify_connection=verify)
        result = await provider.test_connection()
        logger.info("provider_connection_tested", provider=call_config.provider_type,
                    success=result.success, verified=verify)
        return result

    async def list_models(
        self,
        db: AsyncSession,
        tenant_id,
        provider_type: str,
        platform_config: Optional[PlatformConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
    ) -> Tuple[List[str], str]:
        """
        Returns (models, source) where source is "live" or "registry".

        An explicit api_key is used as given; otherwise the tenant's stored
        configuration, then the environment, supply the credential.
        """
        registry = ProviderRegistry(platform_config, self.settings)
        registry_models = registry.get(provider_type).models
        if not is_supported(provider_type):
            return registry_models, "registry"

        configuration = None if api_key else await self.get_by_type(db, tenant_id, provider_type)
        if configuration is not None:
            call_config = self.to_call_config(configuration, registry)
        else:
            call_config = ProviderCallConfig(
                provider_type=provider_type,
                api_key=api_key or self.env_credential(provider_type, registry),
                template=registry.resolve(provider_type),
            )

        provider = get_provider(call_config, http_client=http_client)
        try:
            models = await provider.list_models()
        except UpstreamError as e:
            logger.warning("model_discovery_failed", provider=provider_type, kind=e.kind, error=str(e))
            return registry_models, "registry"

        source = "live" if provider.live_models and call_config.api_key else "registry"
        return models, source


provider_service = ProviderService()
