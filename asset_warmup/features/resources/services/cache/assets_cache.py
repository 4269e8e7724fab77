import hashlib
import logging
import os
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import unquote, urlparse

import httpx

from asset_warmup.platform.config import settings

logger = logging.getLogger(__name__)


class RemoteAssetCache(Protocol):
    """Local copy of third-party assets, fetched on first access."""

    def filepath_for(self, url: str) -> Optional[str]:
        ...

    def content_for(self, url: str) -> Optional[bytes]:
        ...


class AssetsLocalCache:
    """
    Filesystem cache for external CSS/JS.

    Bodies live under <cache_dir>/<host>/<path>. A query string is folded
    into the file name as a short hash so versioned URLs (?ver=1.2) get
    their own entry. Eviction is not handled here.
    """

    def __init__(
        self,
        cache_dir: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.cache_dir = Path(cache_dir or settings.ASSETS_CACHE_DIR)
        self.timeout = timeout if timeout is not None else settings.ASSET_FETCH_TIMEOUT
        self._client = client

    def filepath_for(self, url: str) -> Optional[str]:
        try:
            parsed = urlparse(self._with_scheme(url))
        except ValueError:
            return None
        if not parsed.netloc:
            return None

        path = unquote(parsed.path or "/")
        if path.endswith("/"):
            path += "index"

        parts = [p for p in path.split("/") if p and p not in (".", "..")]
        if not parts or any("\x00" in p for p in parts):
            return None

        if parsed.query:
            digest = hashlib.md5(parsed.query.encode("utf-8")).hexdigest()[:10]
            stem, ext = os.path.splitext(parts[-1])
            parts[-1] = f"{stem}-{digest}{ext}"

        host = parsed.netloc.replace(":", "_")
        return str(self.cache_dir.joinpath(host, *parts))

    def content_for(self, url: str) -> Optional[bytes]:
        filepath = self.filepath_for(url)
        if not filepath:
            return None

        cached = Path(filepath)
        if cached.is_file():
            try:
                content = cached.read_bytes()
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read cached asset {filepath}: {e}")
            else:
                if content:
                    return content

        content = self._fetch(url)
        if not content:
            return None

        try:
            cached.parent.mkdir(parents=True, exist_ok=True)
            cached.write_bytes(content)
        except (OSError, ValueError) as e:
            # Still usable for this scan, only the cache write failed
            logger.warning(f"Could not write cached asset {filepath}: {e}")

        return content

    def _fetch(self, url: str) -> Optional[bytes]:
        headers = {"User-Agent": settings.ASSET_FETCH_USER_AGENT}
        try:
            if self._client is not None:
                response = self._client.get(self._with_scheme(url), headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(follow_redirects=True, timeout=self.timeout) as client:
                    response = client.get(self._with_scheme(url), headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Failed to fetch remote asset {url}: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"Remote asset {url} returned HTTP {response.status_code}")
            return None

        return response.content

    @staticmethod
    def _with_scheme(url: str) -> str:
        if url.startswith("//"):
            scheme = urlparse(settings.SITE_URL).scheme or "https"
            return f"{scheme}:{url}"
        return url
