from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from asset_warmup.features.resources.models.resource import StoredResource

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


class ResourceStore:
    """Idempotent writes into the resources table, keyed by url."""

    @staticmethod
    def get(db: Session, url: str) -> Optional[StoredResource]:
        return db.execute(
            select(StoredResource).where(StoredResource.url == url)
        ).scalar_one_or_none()

    @staticmethod
    def count(db: Session) -> int:
        return db.execute(select(func.count(StoredResource.id))).scalar_one()

    @staticmethod
    def upsert(db: Session, url: str, type: str, content: bytes, content_hash: str) -> str:
        """
        Insert or overwrite the resource stored for url.

        Same url and same hash is a no-op. Does not commit; the caller owns
        the transaction so the queue item can be removed in the same commit.
        """
        existing = ResourceStore.get(db, url)

        if existing is None:
            db.add(StoredResource(
                url=url,
                type=type,
                content=content,
                hash=content_hash,
                last_accessed=datetime.utcnow(),
            ))
            return CREATED

        if existing.hash == content_hash:
            return UNCHANGED

        existing.content = content
        existing.hash = content_hash
        existing.type = type
        existing.last_accessed = datetime.utcnow()
        return UPDATED
