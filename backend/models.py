from typing import Optional, List, Dict, Any
from datetime import datetime
from sqlmodel import SQLModel, Field
from sqlalchemy import Column
from sqlalchemy.dialects.sqlite import JSON as SAJSON

class AppConfig(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    key: str
    value: str

class TrackedMessage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    message_key: str = Field(index=True, unique=True)
    folders: Optional[List[str]] = Field(default=None, sa_column=Column(SAJSON))
    classified: bool = False
    updated_at: datetime = Field(default_factory=datetime.utcnow)

class Recommendation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    message_key: str = Field(index=True)
    src_folder: Optional[str] = None
    subject: Optional[str] = None
    from_addr: Optional[str] = None
    ranked: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(SAJSON))
    status: str = "open"
    filed_to: Optional[List[str]] = Field(default=None, sa_column=Column(SAJSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None
