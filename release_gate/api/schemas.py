"""
Request and response models for the executor access API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime


class VerifyRequest(BaseModel):
    owner_id: str
    access_code: str

    @field_validator('owner_id')
    @classmethod
    def owner_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('owner_id cannot be empty')
        return v.strip()

    @field_validator('access_code')
    @classmethod
    def access_code_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('access_code cannot be empty')
        return v


class PermissionSet(BaseModel):
    can_view_personal_details: bool = False
    can_view_medical_contacts: bool = False
    can_view_funeral_preferences: bool = False
    can_view_documents: bool = False
    can_view_letters: bool = False


class GrantResponse(BaseModel):
    token: str
    owner_id: str
    contact_ref: str
    executor_name: Optional[str] = None
    permissions: PermissionSet
    issued_at: datetime
    expires_at: datetime
    activation: str  # activated, already_active
    dispatch_run_id: Optional[str] = None


class SessionResponse(BaseModel):
    owner_id: str
    contact_ref: str
    permissions: PermissionSet
    expires_at: datetime


class RevokeResponse(BaseModel):
    revoked: bool


class ExecutorAccountResponse(BaseModel):
    owner_id: str
    contact_ref: str
    status: str
    owner_display_name: Optional[str] = None
    is_locked: bool
    release_activated: bool


class AccountsResponse(BaseModel):
    accounts: List[ExecutorAccountResponse]


class DispatchRunResponse(BaseModel):
    run_id: str
    owner_id: str
    status: str
    outcomes: Dict[str, str]
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    mail_configured: bool


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        data.setdefault('timestamp', datetime.now())
        super().__init__(**data)
