from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SettingsUpdateRequest(BaseModel):
    settings: Dict[str, Any] = Field(default_factory=dict)


class SettingsTestRequest(BaseModel):
    test_type: str
    recipient: Optional[str] = None


class UserUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = None
    role: Optional[str] = None


class LegalDocumentUpdateRequest(BaseModel):
    value: str = Field(..., max_length=100_000)
