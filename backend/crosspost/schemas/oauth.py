"""Pydantic schemas for connection management"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class AuthorizationUrlResponse(BaseModel):
    authorization_url: str


class ConnectionStatus(BaseModel):
    connected: bool
    platform: str
    platform_account_id: Optional[str] = None
    platform_account_name: Optional[str] = None
    display_name: Optional[str] = None
    scopes: List[str] = []
    expires_at: Optional[datetime] = None
    needs_refresh: bool = False
    is_expired: bool = False
    refresh_error: Optional[str] = None


class ConnectionList(BaseModel):
    connections: List[ConnectionStatus]
