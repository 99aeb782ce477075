from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field as PydanticField
from sqlmodel import SQLModel, Field

class SiteCreate(SQLModel):
    """
    Data model for the API when registering a new site.
    """
    domain: Optional[str] = Field(default=None, max_length=253)
    nickname: Optional[str] = Field(default=None, max_length=100)

class SiteUpdate(SQLModel):
    siteId: Optional[str] = None
    domain: Optional[str] = Field(default=None, max_length=253)
    nickname: Optional[str] = Field(default=None, max_length=100)

class ShareCreate(SQLModel):
    siteId: Optional[str] = None
    expiresIn: Optional[str] = "never"
    password: Optional[str] = Field(default=None, max_length=128)
    allowedPeriods: Optional[List[str]] = None

class ErrorReport(BaseModel):
    """
    A client-side error reported by the tracking script.
    Field names follow the script's snake_case payload.
    """
    site_id: Optional[str] = None
    type: Optional[str] = None
    url: Optional[str] = PydanticField(default=None, max_length=2000)
    referrer: Optional[str] = PydanticField(default=None, max_length=2000)
    user_agent: Optional[str] = PydanticField(default=None, max_length=500)
    message: Optional[str] = PydanticField(default=None, max_length=2000)
    stack: Optional[str] = PydanticField(default=None, max_length=10000)
    metadata: Optional[Dict[str, Any]] = None

class ImportRequest(SQLModel):
    siteId: Optional[str] = None
    format: Optional[str] = None
    data: Optional[Union[str, List[Dict[str, Any]], Dict[str, Any]]] = None
    source: str = "google-analytics"

class HeatmapRecord(SQLModel):
    siteId: Optional[str] = None
    type: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
