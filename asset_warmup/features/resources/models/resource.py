from sqlalchemy import Column, String, LargeBinary, DateTime, Index
from datetime import datetime

from asset_warmup.platform.db.base import BaseModel


class StoredResource(BaseModel):
    """
    A CSS/JS asset persisted by the drain worker.

    Keyed by url; a changed body overwrites content and hash in place.
    """
    __tablename__ = "rucss_resources"

    url = Column(String(2048), nullable=False, unique=True, index=True)
    type = Column(String(8), nullable=False)  # "css" | "js"
    content = Column(LargeBinary, nullable=False)

    # sha256 of content, compared to skip identical rewrites
    hash = Column(String(64), nullable=False)

    last_accessed = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_rucss_resources_type', 'type'),
    )
