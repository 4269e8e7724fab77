from typing import Iterable, List, Optional, Set

from asset_warmup.features.resources.schemas.resource import Resource, ResourceBatch
from asset_warmup.features.resources.services.cache.assets_cache import AssetsLocalCache
from asset_warmup.features.resources.services.queue.persistence_queue import AsyncPersistenceQueue
from asset_warmup.features.resources.services.resolution.content_resolver import (
    ContentResolver,
    ResolutionFailure,
)
from asset_warmup.features.resources.services.scanning.html_scanner import (
    HTMLResourceScanner,
    ResourceReference,
)
from asset_warmup.platform.logger import get_logger

logger = get_logger(__name__)


class CollectionPipeline:
    """
    Collects the CSS/JS of a rendered page and hands it to the persistence queue.

    The host calls handle(html) for every page it wants warmed up. Nothing
    here waits on store writes, and nothing raises back to the caller:
    outcomes show up in the logs and, later, in the resources table.
    """

    ZONES = frozenset({"all", "css_and_js"})

    def __init__(
        self,
        resolver: ContentResolver,
        queue: AsyncPersistenceQueue,
        scanner: Optional[HTMLResourceScanner] = None,
    ):
        self.resolver = resolver
        self.queue = queue
        self.scanner = scanner or HTMLResourceScanner()

    def handle(self, html: str, page_url: Optional[str] = None) -> None:
        resources: List[Resource] = []
        seen: Set[str] = set()

        self._collect(self.scanner.find_styles(html), resources, seen)
        self._collect(self.scanner.find_scripts(html), resources, seen)

        if not resources:
            logger.debug(f"No resources collected for page {page_url or '<unknown>'}")
            return

        batch = ResourceBatch(page_url=page_url, resources=tuple(resources))

        if self.queue.enqueue(batch) is None:
            return

        self.queue.dispatch()

    def get_zones(self) -> Set[str]:
        return set(self.ZONES)

    def _collect(self, references: Iterable[ResourceReference], resources: List[Resource], seen: Set[str]) -> None:
        for reference in references:
            try:
                full_url = self.resolver.add_url_protocol(reference.url)
            except ValueError:
                full_url = reference.url

            # One entry per url in a batch, resolved once
            if full_url in seen:
                continue
            seen.add(full_url)

            result = self.resolver.resolve(reference.url, reference.kind)

            if isinstance(result, ResolutionFailure):
                context = {"url": result.url, "reason": result.reason.value, "tag": reference.tag}
                if result.path:
                    context["path"] = result.path
                logger.error(
                    f"RUCSS warmup process: {result.message} url={result.url} path={result.path}",
                    extra={"context": context},
                )
                continue

            resources.append(result)


def build_collection_pipeline() -> CollectionPipeline:
    """Pipeline wired with the filesystem asset cache and the default database."""
    return CollectionPipeline(
        resolver=ContentResolver(AssetsLocalCache()),
        queue=AsyncPersistenceQueue(),
    )
