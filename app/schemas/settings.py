from pydantic import BaseModel
from typing import Optional, Dict, Any
from uuid import UUID
from datetime import datetime


class SystemSettingIn(BaseModel):
    value: Any = None
    type: str = "string"
    description: Optional[str] = None
    category: str = "general"
    is_public: bool = False


class SystemSettingOut(BaseModel):
    id: UUID
    key: str
    value: Any = None
    type: str
    description: Optional[str] = None
    category: str
    is_public: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ProviderTemplatesIn(BaseModel):
    # provider_type -> template fields (name, description, models, default_model, ...)
    templates: Dict[str, Dict[str, Any]]
