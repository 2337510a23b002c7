from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal
from uuid import UUID
from datetime import datetime

WidgetStatus = Literal["active", "draft", "archived"]


class WidgetCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    provider_configuration_id: Optional[UUID] = None
    # free-form groups consumed by the embed loader; omitted groups take platform defaults
    design: Optional[Dict[str, Any]] = None
    behavior: Optional[Dict[str, Any]] = None
    placement: Optional[Dict[str, Any]] = None
    status: WidgetStatus = "active"


class WidgetUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    provider_configuration_id: Optional[UUID] = None
    design: Optional[Dict[str, Any]] = None
    behavior: Optional[Dict[str, Any]] = None
    placement: Optional[Dict[str, Any]] = None
    status: Optional[WidgetStatus] = None


class WidgetOut(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    provider_configuration_id: Optional[UUID] = None
    design: Dict[str, Any] = {}
    behavior: Dict[str, Any] = {}
    placement: Dict[str, Any] = {}
    status: str
    embed_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class WidgetListResponse(BaseModel):
    items: List[WidgetOut]
    total: int
    page: int
    per_page: int


class EmbedCodeResponse(BaseModel):
    embed_code: str
    embed_id: str
    instructions: List[str]


class WidgetProviderInfo(BaseModel):
    type: str
    model: str


class WidgetConfigResponse(BaseModel):
    id: str
    name: str
    design: Dict[str, Any] = {}
    behavior: Dict[str, Any] = {}
    placement: Dict[str, Any] = {}
    ai_provider: Optional[WidgetProviderInfo] = None


class VisitorData(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ContextTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class WidgetChatRequest(BaseModel):
    message: str
    session_id: Optional[str] = Field(None, max_length=255)
    user_data: Optional[VisitorData] = None
    conversation_history: Optional[List[ContextTurn]] = None


class TokenUsageOut(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class WidgetChatResponse(BaseModel):
    success: bool
    session_id: str
    response: Optional[str] = None
    response_time_ms: Optional[float] = None
    token_usage: Optional[TokenUsageOut] = None
    message_id: Optional[UUID] = None
    model: Optional[str] = None
    reason: Optional[str] = None
