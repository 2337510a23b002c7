"""
System settings and the per-request PlatformConfig.

A setting resolves from the system_settings table first, then from an
environment variable named after the key (upper-cased, dots to underscores),
then from the compiled default below. Values are coerced by their type tag.
"""
import copy
import json
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.core.logging import logger
from app.db.models import SystemSetting

SETTING_TYPES = ("string", "integer", "float", "boolean", "json", "array")
TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class SettingDefault:
    value: Any
    type: str = "string"
    category: str = "general"
    description: Optional[str] = None
    is_public: bool = False


SETTING_DEFAULTS: Dict[str, SettingDefault] = {
    # general
    "site.name": SettingDefault("AI Chat Widget Platform", description="Site name", is_public=True),
    "site.description": SettingDefault("Build and deploy AI-powered chat widgets",
                                       description="Site description", is_public=True),
    "site.contact_email": SettingDefault("support@example.com", description="Contact email"),

    # chat pipeline
    "chat.context_messages": SettingDefault(10, "integer", "chat", "Prior messages sent as conversation context"),
    "chat.max_message_length": SettingDefault(4000, "integer", "chat", "Maximum visitor message length"),

    # providers
    "available_providers": SettingDefault(None, "json", "providers", "Provider template overrides"),
    "providers.verify_connection": SettingDefault(
        False, "boolean", "providers", "Connection tests perform a real upstream round trip"),

    # widget
    "widget.config_cache_ttl": SettingDefault(300, "integer", "widget", "Public widget config cache TTL in seconds"),

    "widget.design.primary_color": SettingDefault("#3b82f6", category="widget_defaults"),
    "widget.design.secondary_color": SettingDefault("#f3f4f6", category="widget_defaults"),
    "widget.design.text_color": SettingDefault("#111827", category="widget_defaults"),
    "widget.design.font_family": SettingDefault("Inter", category="widget_defaults"),
    "widget.design.font_size": SettingDefault(14, "integer", "widget_defaults"),
    "widget.design.border_radius": SettingDefault(8, "integer", "widget_defaults"),
    "widget.design.header_text": SettingDefault("Chat with AI Assistant", category="widget_defaults"),
    "widget.design.button_text": SettingDefault("Send", category="widget_defaults"),
    "widget.design.placeholder_text": SettingDefault("Type your message here...", category="widget_defaults"),

    "widget.behavior.welcome_message": SettingDefault(
        "Welcome to our AI chat assistant. How can I help you today?", category="widget_defaults"),
    "widget.behavior.initial_message": SettingDefault("Hello! How can I help you today?", category="widget_defaults"),
    "widget.behavior.typing_indicator": SettingDefault(True, "boolean", "widget_defaults"),
    "widget.behavior.show_timestamp": SettingDefault(True, "boolean", "widget_defaults"),
    "widget.behavior.response_delay": SettingDefault(500, "integer", "widget_defaults"),
    "widget.behavior.max_messages": SettingDefault(50, "integer", "widget_defaults"),

    "widget.placement.position": SettingDefault("bottom-right", category="widget_defaults"),
    "widget.placement.offset_x": SettingDefault(20, "integer", "widget_defaults"),
    "widget.placement.offset_y": SettingDefault(20, "integer", "widget_defaults"),
    "widget.placement.mobile_position": SettingDefault("bottom", category="widget_defaults"),
    "widget.placement.show_on_pages": SettingDefault("all", category="widget_defaults"),
    "widget.placement.trigger_type": SettingDefault("button", category="widget_defaults"),
    "widget.placement.trigger_text": SettingDefault("Chat with us", category="widget_defaults"),
}

# camelCase widget field -> setting key, per JSON group
WIDGET_DEFAULT_KEYS = {
    "design": {
        "primaryColor": "widget.design.primary_color",
        "secondaryColor": "widget.design.secondary_color",
        "textColor": "widget.design.text_color",
        "fontFamily": "widget.design.font_family",
        "fontSize": "widget.design.font_size",
        "borderRadius": "widget.design.border_radius",
        "headerText": "widget.design.header_text",
        "buttonText": "widget.design.button_text",
        "placeholderText": "widget.design.placeholder_text",
    },
    "behavior": {
        "welcomeMessage": "widget.behavior.welcome_message",
        "initialMessage": "widget.behavior.initial_message",
        "typingIndicator": "widget.behavior.typing_indicator",
        "showTimestamp": "widget.behavior.show_timestamp",
        "responseDelay": "widget.behavior.response_delay",
        "maxMessages": "widget.behavior.max_messages",
    },
    "placement": {
        "position": "widget.placement.position",
        "offsetX": "widget.placement.offset_x",
        "offsetY": "widget.placement.offset_y",
        "mobilePosition": "widget.placement.mobile_position",
        "showOnPages": "widget.placement.show_on_pages",
        "triggerType": "widget.placement.trigger_type",
        "triggerText": "widget.placement.trigger_text",
    },
}


def env_name(key: str) -> str:
    return key.upper().replace(".", "_")


def coerce(value: Any, type_tag: str) -> Any:
    """
    Convert a raw stored or environment value to its declared type.

    Raises ValueError (or TypeError) when the value cannot be converted.
    """
    if value is None:
        return None
    if type_tag == "integer":
        return int(value)
    if type_tag == "float":
        return float(value)
    if type_tag == "boolean":
        if isinstance(value, str):
            return value.strip().lower() in TRUTHY
        return bool(value)
    if type_tag in ("json", "array"):
        if isinstance(value, str):
            value = json.loads(value)
        if type_tag == "array" and not isinstance(value, list):
            raise ValueError("expected a JSON array")
        return value
    return value if isinstance(value, str) else str(value)


class PlatformConfig:
    """
    Snapshot of the settings visible to one request.
    """

    def __init__(self, stored: Optional[Mapping[str, tuple]] = None, environ: Optional[Mapping[str, str]] = None):
        # key -> (value, type tag)
        self.stored = dict(stored or {})
        self.environ = os.environ if environ is None else environ

    @classmethod
    async def load(cls, db: AsyncSession, environ: Optional[Mapping[str, str]] = None) -> "PlatformConfig":
        result = await db.execute(select(SystemSetting))
        rows = result.scalars().all()
        return cls({row.key: (row.value, row.type) for row in rows}, environ=environ)

    def _type_of(self, key: str) -> str:
        if key in self.stored:
            return self.stored[key][1] or "string"
        default = SETTING_DEFAULTS.get(key)
        return default.type if default else "string"

    def get(self, key: str, default: Any = None) -> Any:
        type_tag = self._type_of(key)

        if key in self.stored:
            try:
                return coerce(self.stored[key][0], type_tag)
            except (TypeError, ValueError) as e:
                logger.warning("setting_coercion_failed", key=key, source="database", error=str(e))

        raw = self.environ.get(env_name(key))
        if raw is not None:
            try:
                return coerce(raw, type_tag)
            except (TypeError, ValueError) as e:
                logger.warning("setting_coercion_failed", key=key, source="environment", error=str(e))

        if key in SETTING_DEFAULTS:
            return copy.deepcopy(SETTING_DEFAULTS[key].value)
        return default

    def widget_defaults(self) -> Dict[str, Dict[str, Any]]:
        return {
            group: {field: self.get(key) for field, key in keys.items()}
            for group, keys in WIDGET_DEFAULT_KEYS.items()
        }


class SettingsService:
    async def load_config(self, db: AsyncSession) -> PlatformConfig:
        return await PlatformConfig.load(db)

    async def get_setting(self, db: AsyncSession, key: str) -> Optional[SystemSetting]:
        result = await db.execute(select(SystemSetting).where(SystemSetting.key == key))
        return result.scalars().first()

    async def get(self, db: AsyncSession, key: str, default: Any = None) -> Any:
        setting = await self.get_setting(db, key)
        if setting is None:
            return default
        return setting.value

    async def set(
        self,
        db: AsyncSession,
        key: str,
        value: Any,
        type: str = "string",
        description: Optional[str] = None,
        category: str = "general",
        is_public: bool = False,
    ) -> SystemSetting:
        """
        Create or update the setting identified by key.
        """
        if type not in SETTING_TYPES:
            raise ValidationError(f"type must be one of {', '.join(SETTING_TYPES)}", field="type")
        try:
            coerce(value, type)
        except (TypeError, ValueError):
            raise ValidationError(f"value is not a valid {type}", field="value")

        setting = await self.get_setting(db, key)
        if setting is None:
            setting = SystemSetting(id=uuid.uuid4(), key=key)
            db.add(setting)
        setting.value = value
        setting.type = type
        setting.description = description
        setting.category = category
        setting.is_public = is_public

        await db.commit()
        await db.refresh(setting)
        logger.info("system_setting_saved", key=key, category=category)
        return setting

    async def delete(self, db: AsyncSession, key: str) -> bool:
        setting = await self.get_setting(db, key)
        if setting is None:
            return False
        await db.delete(setting)
        await db.commit()
        logger.info("system_setting_deleted", key=key)
        return True

    async def list_settings(self, db: AsyncSession) -> List[SystemSetting]:
        result = await db.execute(select(SystemSetting).order_by(SystemSetting.category, SystemSetting.key))
        return list(result.scalars().all())

    async def get_by_category(self, db: AsyncSession, category: str) -> List[SystemSetting]:
        result = await db.execute(
            select(SystemSetting).where(SystemSetting.category == category).order_by(SystemSetting.key)
        )
        return list(result.scalars().all())

    async def get_public_settings(self, db: AsyncSession) -> List[SystemSetting]:
        result = await db.execute(
            select(SystemSetting).where(SystemSetting.is_public.is_(True)).order_by(SystemSetting.key)
        )
        return list(result.scalars().all())

    async def initialize_defaults(self, db: AsyncSession) -> int:
        """
        Insert every compiled default that has no row yet. Existing rows are left untouched.
        """
        result = await db.execute(select(SystemSetting.key))
        existing = set(result.scalars().all())

        created = 0
        for key, default in SETTING_DEFAULTS.items():
            if key in existing or default.value is None:
                continue
            db.add(SystemSetting(
                key=key,
                value=default.value,
                type=default.type,
                description=default.description,
                category=default.category,
                is_public=default.is_public,
            ))
            created += 1

        await db.commit()
        logger.info("system_settings_initialized", created=created)
        return created


settings_service = SettingsService()
