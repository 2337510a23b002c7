from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_platform_config, http_error
from app.auth.api_key import require_tenant_api_key
from app.core.exceptions import WidgetPlatformError
from app.db.models import Tenant
from app.db.session import get_db
from app.schemas.chat import (
    ChatMessageRequest,
    ChatStatsResponse,
    SessionHistoryResponse,
    SessionSummary,
)
from app.schemas.widget import WidgetChatResponse
from app.services.chat_service import chat_service
from app.services.settings_service import PlatformConfig

router = APIRouter()


@router.post("/message", response_model=WidgetChatResponse)
async def send_message(
    payload: ChatMessageRequest,
    request: Request,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    """
    Dashboard-side chat (widget preview / API testing). Any widget status is allowed.
    """
    try:
        result = await chat_service.send_message(
            db=db,
            widget_ref=payload.widget_id,
            session_id=payload.session_id,
            text=payload.message,
            user_data=payload.user_data.model_dump() if payload.user_data else None,
            conversation_history=(
                [turn.model_dump() for turn in payload.conversation_history]
                if payload.conversation_history is not None else None
            ),
            tenant_id=tenant.id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            platform_config=platform_config,
        )
    except WidgetPlatformError as e:
        raise http_error(e)
    return result.model_dump()


@router.get("/sessions", response_model=List[SessionSummary])
async def list_sessions(
    widget_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=200),
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await chat_service.list_sessions(db, tenant.id, widget_id=widget_id, limit=limit)


@router.get("/sessions/{session_id}", response_model=SessionHistoryResponse)
async def get_session_history(
    session_id: str,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    messages = await chat_service.get_session_messages(db, tenant.id, session_id)
    return {"session_id": session_id, "messages": messages}


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    deleted = await chat_service.delete_session(db, tenant.id, session_id)
    return {"status": "success", "deleted": deleted}


@router.get("/stats", response_model=ChatStatsResponse)
async def chat_stats(
    tenant: Tenant = Depends(require_tenant_api_key),
    db: AsyncSession = Depends(get_db),
):
    return await chat_service.provider_stats(db, tenant.id)
