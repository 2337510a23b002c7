import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import (
    ConfigurationError,
    UnsupportedProviderError,
    ValidationError,
    WidgetNotFoundError,
)
from app.core.logging import logger
from app.db.models import Message, ProviderConfiguration, Widget
from app.llm.base import TokenUsage
from app.llm.dispatcher import get_provider, is_supported
from app.llm.registry import ProviderRegistry
from app.prompt.builder import PromptBuilder
from app.services.provider_service import provider_service
from app.services.settings_service import PlatformConfig

NO_PROVIDER_REASON = "no provider configured"
CONTEXT_MESSAGES_KEY = "chat.context_messages"
MAX_MESSAGE_LENGTH_KEY = "chat.max_message_length"


class ChatResult(BaseModel):
    success: bool
    session_id: str
    response: Optional[str] = None
    response_time_ms: Optional[float] = None
    token_usage: Optional[TokenUsage] = None
    message_id: Optional[uuid.UUID] = None
    model: Optional[str] = None
    reason: Optional[str] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatService:
    def __init__(self):
        self.prompt_builder = PromptBuilder()

    async def _get_widget(self, db: AsyncSession, widget_ref: str, tenant_id=None) -> Optional[Widget]:
        """
        Look a widget up by embed id or internal id.

        Public lookups (no tenant) only see active widgets.
        """
        stmt = select(Widget).options(selectinload(Widget.provider_configuration))
        try:
            internal_id = uuid.UUID(str(widget_ref))
        except ValueError:
            internal_id = None

        if internal_id is not None and tenant_id is not None:
            stmt = stmt.where((Widget.embed_id == str(widget_ref)) | (Widget.id == internal_id))
        else:
            stmt = stmt.where(Widget.embed_id == str(widget_ref))

        if tenant_id is not None:
            stmt = stmt.where(Widget.tenant_id == tenant_id)
        else:
            stmt = stmt.where(Widget.status == "active")

        result = await db.execute(stmt)
        return result.scalars().first()

    async def _load_history(self, db: AsyncSession, widget_id, session_id: str, limit: int) -> List[Message]:
        if limit <= 0:
            return []
        result = await db.execute(
            select(Message)
            .where(Message.widget_id == widget_id, Message.session_id == session_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def _load_config(self, db: AsyncSession) -> PlatformConfig:
        return await PlatformConfig.load(db)

    async def send_message(
        self,
        db: AsyncSession,
        widget_ref: str,
        session_id: Optional[str],
        text: str,
        user_data: Optional[Dict[str, Any]] = None,
        conversation_history: Optional[List[Dict[str, str]]] = None,
        tenant_id=None,
        client: Optional[httpx.AsyncClient] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        platform_config: Optional[PlatformConfig] = None,
    ) -> ChatResult:
        """
        Run one chat turn for a widget.

        The visitor message is always stored once it passes validation and the
        widget resolves. The AI reply is stored only when the upstream call
        succeeded. Configuration problems are returned as a failed ChatResult;
        an unknown provider type raises before anything is written.
        """
        config = platform_config or await self._load_config(db)
        text = self.prompt_builder.sanitize_message(text, config.get(MAX_MESSAGE_LENGTH_KEY))

        widget = await self._get_widget(db, widget_ref, tenant_id)
        if widget is None:
            raise WidgetNotFoundError(widget_ref)

        session_id = session_id or str(uuid.uuid4())
        user_data = {k: v for k, v in (user_data or {}).items() if v}
        provider_config: Optional[ProviderConfiguration] = widget.provider_configuration

        provider = None
        failure_reason = None
        if provider_config is None:
            failure_reason = NO_PROVIDER_REASON
        elif not is_supported(provider_config.provider_type):
            raise UnsupportedProviderError(provider_config.provider_type)
        elif not provider_config.is_active:
            failure_reason = f"provider configuration '{provider_config.name}' is inactive"
        else:
            try:
                call_config = provider_service.to_call_config(provider_config, ProviderRegistry(config))
                if not call_config.api_key:
                    raise ConfigurationError(f"no credential configured for {provider_config.provider_type}")
                call_config.system_prompt = self.prompt_builder.build_system_prompt(
                    provider_config.system_prompt,
                    widget_name=widget.name,
                    behavior=widget.behavior,
                    user_data=user_data,
                )
                provider = get_provider(call_config, http_client=client)
            except (ConfigurationError, ValidationError) as e:
                failure_reason = str(e)

        if conversation_history is not None:
            context = [
                {"role": turn["role"], "content": turn["content"]}
                for turn in conversation_history
                if turn.get("content")
            ]
        elif provider is not None:
            rows = await self._load_history(db, widget.id, session_id, int(config.get(CONTEXT_MESSAGES_KEY) or 0))
            context = self.prompt_builder.build_context(rows)
        else:
            context = []

        inbound = Message(
            id=uuid.uuid4(),
            widget_id=widget.id,
            session_id=session_id,
            sender_type="user",
            message=text,
            user_data=user_data or None,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=utcnow(),
        )
        db.add(inbound)
        await db.flush()

        with logger.contextualize(widget_id=str(widget.id), session_id=session_id):
            if provider is None:
                await db.commit()
                logger.warning("chat_not_dispatched", reason=failure_reason)
                return ChatResult(success=False, session_id=session_id, reason=failure_reason)

            result = await provider.generate_response(text, context)

            if not result.success:
                await db.commit()
                logger.warning("chat_upstream_failed", provider=result.provider, kind=result.error_kind)
                return ChatResult(
                    success=False,
                    session_id=session_id,
                    response_time_ms=result.response_time_ms,
                    model=result.model,
                    reason=result.error,
                )

            outbound = Message(
                id=uuid.uuid4(),
                widget_id=widget.id,
                session_id=session_id,
                sender_type="ai",
                response=result.content,
                response_time_ms=result.response_time_ms,
                token_usage=result.usage.model_dump(exclude={"estimated"}) if result.usage else None,
                model_used=result.model,
                # strictly after the visitor message even on coarse clocks
                created_at=max(utcnow(), inbound.created_at + timedelta(microseconds=1)),
            )
            db.add(outbound)
            await db.commit()

            logger.info(
                "chat_completed",
                provider=result.provider,
                model=result.model,
                latency_ms=result.response_time_ms,
                total_tokens=result.usage.total_tokens if result.usage else 0,
            )
            return ChatResult(
                success=True,
                session_id=session_id,
                response=result.content,
                response_time_ms=result.response_time_ms,
                token_usage=result.usage,
                message_id=outbound.id,
                model=result.model,
            )

    # history

    async def get_session_messages(self, db: AsyncSession, tenant_id, session_id: str) -> List[Message]:
        result = await db.execute(
            select(Message)
            .join(Widget, Message.widget_id == Widget.id)
            .where(Widget.tenant_id == tenant_id, Message.session_id == session_id)
            .order_by(Message.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_sessions(self, db: AsyncSession, tenant_id, widget_id=None, limit: int = 50) -> List[Dict[str, Any]]:
        stmt = (
            select(
                Message.session_id,
                Message.widget_id,
                func.count(Message.id).label("message_count"),
                func.min(Message.created_at).label("first_message_at"),
                func.max(Message.created_at).label("last_message_at"),
            )
            .join(Widget, Message.widget_id == Widget.id)
            .where(Widget.tenant_id == tenant_id)
            .group_by(Message.session_id, Message.widget_id)
            .order_by(func.max(Message.created_at).desc())
            .limit(limit)
        )
        if widget_id is not None:
            stmt = stmt.where(Message.widget_id == widget_id)

        result = await db.execute(stmt)
        return [dict(row._mapping) for row in result.all()]

    async def delete_session(self, db: AsyncSession, tenant_id, session_id: str) -> int:
        widget_ids = select(Widget.id).where(Widget.tenant_id == tenant_id)
        result = await db.execute(
            delete(Message).where(Message.session_id == session_id, Message.widget_id.in_(widget_ids))
        )
        await db.commit()
        logger.info("chat_session_deleted", tenant_id=str(tenant_id), session_id=session_id,
                    deleted=result.rowcount)
        return result.rowcount

    async def provider_stats(self, db: AsyncSession, tenant_id) -> Dict[str, Any]:
        """
        Per-provider usage for a tenant, attributed through each widget's current provider.
        """
        configurations = await provider_service.list_configurations(db, tenant_id)

        widget_rows = await db.execute(
            select(Widget.provider_configuration_id, func.count(Widget.id))
            .where(Widget.tenant_id == tenant_id)
            .group_by(Widget.provider_configuration_id)
        )
        widget_counts = {row[0]: row[1] for row in widget_rows.all()}

        message_rows = await db.execute(
            select(
                Widget.provider_configuration_id,
                func.count(Message.id),
                func.coalesce(func.sum(Message.token_usage["total_tokens"].as_integer()), 0),
                func.avg(Message.response_time_ms),
            )
            .join(Widget, Message.widget_id == Widget.id)
            .where(Widget.tenant_id == tenant_id, Message.sender_type == "ai")
            .group_by(Widget.provider_configuration_id)
        )
        message_stats = {row[0]: row[1:] for row in message_rows.all()}

        totals = await db.execute(
            select(func.count(Message.id), func.count(func.distinct(Message.session_id)))
            .join(Widget, Message.widget_id == Widget.id)
            .where(Widget.tenant_id == tenant_id)
        )
        total_messages, total_sessions = totals.one()

        providers = []
        for configuration in configurations:
            count, tokens, avg_ms = message_stats.get(configuration.id, (0, 0, None))
            providers.append({
                "provider_type": configuration.provider_type,
                "name": configuration.name,
                "model": configuration.model,
                "is_active": configuration.is_active,
                "widget_count": widget_counts.get(configuration.id, 0),
                "message_count": count,
                "total_tokens": int(tokens or 0),
                "avg_response_time_ms": round(float(avg_ms), 2) if avg_ms is not None else None,
            })

        return {
            "total_messages": total_messages or 0,
            "total_sessions": total_sessions or 0,
            "providers": providers,
        }


chat_service = ChatService()
