from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_platform_config, http_error
from app.core.exceptions import WidgetPlatformError
from app.db.session import get_db
from app.schemas.widget import WidgetChatRequest, WidgetChatResponse, WidgetConfigResponse
from app.services.chat_service import chat_service
from app.services.settings_service import PlatformConfig
from app.services.widget_service import widget_service

router = APIRouter()


@router.get("/{embed_id}/config", response_model=WidgetConfigResponse)
async def get_widget_config(
    embed_id: str,
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    """
    Public configuration fetched by the embed loader. Only active widgets resolve.
    """
    try:
        return await widget_service.get_public_config(db, embed_id, platform_config)
    except WidgetPlatformError as e:
        raise http_error(e)


@router.post("/{embed_id}/send-message", response_model=WidgetChatResponse)
async def widget_send_message(
    embed_id: str,
    chat_req: WidgetChatRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    platform_config: PlatformConfig = Depends(get_platform_config),
):
    """
    Visitor message from an embedded widget. Upstream failures come back as
    success=false with a reason, not as an HTTP error.
    """
    try:
        result = await chat_service.send_message(
            db=db,
            widget_ref=embed_id,
            session_id=chat_req.session_id,
            text=chat_req.message,
            user_data=chat_req.user_data.model_dump() if chat_req.user_data else None,
            conversation_history=(
                [turn.model_dump() for turn in chat_req.conversation_history]
                if chat_req.conversation_history is not None else None
            ),
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            platform_config=platform_config,
        )
    except WidgetPlatformError as e:
        raise http_error(e)
    return result.model_dump()
