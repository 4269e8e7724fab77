"""
Resource Schemas

In-memory shapes for what a page scan collects before the queue takes
ownership of it.
"""
import enum
import hashlib
from typing import Optional, Tuple

from pydantic import BaseModel, field_validator


class ResourceType(str, enum.Enum):
    """Kind of asset, taken from the tag that referenced it."""
    css = "css"
    js = "js"


class Resource(BaseModel):
    """One discovered asset with its raw body."""
    url: str
    content: bytes
    type: ResourceType

    class Config:
        frozen = True

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Resource url cannot be empty")
        return v.strip()

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: bytes) -> bytes:
        if not v:
            raise ValueError("Resource content cannot be empty")
        return v

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


class ResourceBatch(BaseModel):
    """Resources collected from a single page scan, in collection order."""
    page_url: Optional[str] = None
    resources: Tuple[Resource, ...] = ()

    class Config:
        frozen = True

    @property
    def is_empty(self) -> bool:
        return not self.resources
