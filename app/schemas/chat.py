from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime

from app.schemas.widget import WidgetChatRequest


class ChatMessageRequest(WidgetChatRequest):
    # embed id or internal widget id; drafts are reachable from the dashboard
    widget_id: str


class MessageOut(BaseModel):
    id: UUID
    widget_id: UUID
    session_id: str
    sender_type: str
    message: Optional[str] = None
    response: Optional[str] = None
    user_data: Optional[Dict[str, Any]] = None
    response_time_ms: Optional[float] = None
    token_usage: Optional[Dict[str, Any]] = None
    model_used: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SessionSummary(BaseModel):
    session_id: str
    widget_id: UUID
    message_count: int
    first_message_at: datetime
    last_message_at: datetime


class SessionHistoryResponse(BaseModel):
    session_id: str
    messages: List[MessageOut]


class ProviderStats(BaseModel):
    provider_type: str
    name: str
    model: str
    is_active: bool
    widget_count: int
    message_count: int
    total_tokens: int
    avg_response_time_ms: Optional[float] = None


class ChatStatsResponse(BaseModel):
    total_messages: int
    total_sessions: int
    providers: List[ProviderStats]
