import enum
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union
from urllib.parse import unquote, urljoin, urlparse

from asset_warmup.features.resources.schemas.resource import Resource, ResourceType
from asset_warmup.features.resources.services.cache.assets_cache import RemoteAssetCache
from asset_warmup.platform.config import settings


class ResolutionFailureReason(str, enum.Enum):
    no_path = "no-path"
    empty_content = "empty-content"


@dataclass(frozen=True)
class ResolutionFailure:
    """A reference that could not be turned into content. Logged and dropped."""
    reason: ResolutionFailureReason
    url: str
    path: Optional[str] = None

    @property
    def message(self) -> str:
        if self.reason is ResolutionFailureReason.no_path:
            return "Couldn't get the file path from the URL."
        return "No file content."


class ContentResolver:
    """
    Turns one stylesheet/script reference into a Resource.

    External URLs go through the remote asset cache; URLs on the site (or
    one of its CDN hosts) are mapped onto the document root and read from
    disk. Holds no mutable state, so one instance can serve concurrent scans.
    """

    def __init__(
        self,
        asset_cache: RemoteAssetCache,
        site_url: Optional[str] = None,
        site_root: Optional[str] = None,
        cdn_hosts: Optional[Iterable[str]] = None,
    ):
        self.asset_cache = asset_cache
        self.site_url = (site_url or settings.SITE_URL).rstrip("/")
        self.site_root = os.path.realpath(site_root or settings.SITE_ROOT)

        parsed_site = urlparse(self.site_url)
        self.site_scheme = parsed_site.scheme or "https"
        self.site_host = (parsed_site.hostname or "").lower()
        self.site_path = parsed_site.path.rstrip("/")

        hosts = cdn_hosts if cdn_hosts is not None else settings.CDN_HOSTS
        self.cdn_hosts = {self._host_of(h) for h in hosts if h}

    def resolve(self, url: str, kind: ResourceType) -> Union[Resource, ResolutionFailure]:
        full_url = url
        try:
            full_url = self.add_url_protocol(url)
            external = self.is_external(full_url)
            file_path = self.asset_cache.filepath_for(full_url) if external else self.get_file_path(full_url)
        except ValueError:
            # urllib rejects malformed netlocs such as "https://[bad/x.js"
            file_path = None

        if not file_path:
            return ResolutionFailure(ResolutionFailureReason.no_path, full_url)

        content = self.asset_cache.content_for(full_url) if external else self.get_file_content(file_path)
        if not content:
            return ResolutionFailure(ResolutionFailureReason.empty_content, full_url, file_path)

        return Resource(url=full_url, content=content, type=kind)

    def add_url_protocol(self, url: str) -> str:
        """Qualify protocol-relative and site-relative URLs against the site."""
        url = url.strip()
        if url.startswith("//"):
            return f"{self.site_scheme}:{url}"
        if urlparse(url).scheme:
            return url
        return urljoin(self.site_url + "/", url)

    def is_external(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return False
        return host != self.site_host and host not in self.cdn_hosts

    def get_file_path(self, url: str) -> Optional[str]:
        """Map a local URL onto the document root; None when it cannot be mapped."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            return None

        path = unquote(parsed.path)
        if self.site_path and path.startswith(self.site_path + "/"):
            path = path[len(self.site_path):]

        relative = path.lstrip("/")
        if not relative or "\x00" in relative:
            return None

        candidate = os.path.realpath(os.path.join(self.site_root, relative))
        # Refuse anything that climbs out of the document root
        if os.path.commonpath([self.site_root, candidate]) != self.site_root:
            return None

        return candidate

    @staticmethod
    def get_file_content(file_path: str) -> Optional[bytes]:
        try:
            return Path(file_path).read_bytes()
        except (OSError, ValueError):
            return None

    @staticmethod
    def _host_of(value: str) -> str:
        value = value.strip().lower()
        if "//" not in value:
            value = "//" + value
        return (urlparse(value).hostname or "").lower()
