from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime


class ProviderConfigurationCreate(BaseModel):
    provider_type: str
    name: Optional[str] = None
    api_key: Optional[str] = None
    model: Optional[str] = None
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(2048, ge=1, le=32000)
    system_prompt: Optional[str] = None
    advanced_settings: Dict[str, Any] = {}
    is_active: bool = True


class ProviderConfigurationUpdate(BaseModel):
    name: Optional[str] = None
    # omitted keeps the stored credential; empty string clears it
    api_key: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0, le=2)
    max_tokens: Optional[int] = Field(None, ge=1, le=32000)
    system_prompt: Optional[str] = None
    advanced_settings: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class ProviderConfigurationOut(BaseModel):
    id: UUID
    provider_type: str
    name: str
    api_key_masked: Optional[str] = None
    has_api_key: bool = False
    uses_env_credential: bool = False
    model: str
    temperature: float
    max_tokens: int
    system_prompt: Optional[str] = None
    advanced_settings: Dict[str, Any] = {}
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ConnectionTestRequest(BaseModel):
    provider_type: str
    api_key: Optional[str] = None
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 100
    advanced_settings: Dict[str, Any] = {}


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    provider: str
    model: Optional[str] = None


class ProviderDescriptorOut(BaseModel):
    provider_type: str
    name: str
    description: Optional[str] = None
    default_model: Optional[str] = None
    default_temperature: float
    default_max_tokens: int
    api_endpoint: Optional[str] = None
    documentation_url: Optional[str] = None
    models: List[str] = []
    supported_features: List[str] = []
    env_configured: bool = False
    supported: bool = True
    configured: bool = False


class ModelListResponse(BaseModel):
    provider_type: str
    models: List[str]
    source: str
