from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal
from uuid import UUID
from datetime import datetime

from app.llm.base import TokenUsage

ModelSortField = Literal["name", "provider_type", "created_at", "is_active", "is_featured"]


class AIModelCreate(BaseModel):
    model_config = {"protected_namespaces": ()}

    provider_type: str
    model_id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    provider_configuration_id: Optional[UUID] = None
    description: Optional[str] = None
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(1000, ge=1, le=32000)
    system_prompt: Optional[str] = None
    capabilities: List[str] = []
    configuration: Dict[str, Any] = {}
    is_active: bool = True
    is_featured: bool = False


class AIModelUpdate(BaseModel):
    model_config = {"protected_namespaces": ()}

    provider_configuration_id: Optional[UUID] = None
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    model_id: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0, le=2)
    max_tokens: Optional[int] = Field(None, ge=1, le=32000)
    system_prompt: Optional[str] = None
    capabilities: Optional[List[str]] = None
    configuration: Optional[Dict[str, Any]] = None
    performance_metrics: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class AIModelOut(BaseModel):
    id: UUID
    provider_configuration_id: Optional[UUID] = None
    name: str
    model_id: str
    provider_type: str
    description: Optional[str] = None
    temperature: float
    max_tokens: int
    system_prompt: Optional[str] = None
    capabilities: List[str] = []
    configuration: Dict[str, Any] = {}
    performance_metrics: Dict[str, Any] = {}
    is_active: bool
    is_featured: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True, "protected_namespaces": ()}


class AIModelListResponse(BaseModel):
    items: List[AIModelOut]
    total: int
    page: int
    per_page: int


class FetchModelsRequest(BaseModel):
    provider_type: str
    # omitted uses the tenant's stored credential, then the environment
    api_key: Optional[str] = None


class ModelTestRequest(BaseModel):
    model_config = {"protected_namespaces": ()}

    provider_type: str
    model_id: str
    api_key: Optional[str] = None
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(100, ge=1, le=32000)
    system_prompt: Optional[str] = None


class ModelTestResponse(BaseModel):
    success: bool
    message: str
    provider: str
    model: str
    response: Optional[str] = None
    response_time_ms: float = 0.0
    token_usage: Optional[TokenUsage] = None
