from sqlalchemy import Column, String, Boolean, Integer, Text, DateTime, JSON, UniqueConstraint
from datetime import datetime

from asset_warmup.platform.db.base import BaseModel


class UsedCSS(BaseModel):
    """
    Per-page "used CSS" artifact.

    Filled by the used-CSS computation, which lives outside this package;
    only the table lifecycle is managed here.
    """
    __tablename__ = "rucss_used_css"

    url = Column(String(2048), nullable=False, index=True)
    is_mobile = Column(Boolean, default=False, nullable=False)

    css = Column(Text, nullable=True)
    unprocessed_css = Column(JSON, nullable=True)

    retries = Column(Integer, default=0, nullable=False)
    last_accessed = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('url', 'is_mobile', name='uq_rucss_used_css_url_mobile'),
    )
