import logging
from typing import Dict, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from asset_warmup.features.resources.models.resource import StoredResource
from asset_warmup.features.resources.models.resource_queue import ResourceQueueBatch, ResourceQueueItem
from asset_warmup.features.resources.models.used_css import UsedCSS
from asset_warmup.platform.db.session import get_sync_engine
from asset_warmup.platform.exceptions import StoreLifecycleFailure

logger = logging.getLogger(__name__)


class DatabaseTable:
    """exists / install / uninstall for the tables behind one model set."""

    models = ()

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_sync_engine()
        return self._engine

    @property
    def name(self) -> str:
        return self.models[0].__tablename__

    @property
    def tables(self):
        return [model.__table__ for model in self.models]

    def exists(self) -> bool:
        try:
            return inspect(self.engine).has_table(self.name)
        except SQLAlchemyError as e:
            raise StoreLifecycleFailure(f"Could not check table {self.name}: {e}", table_name=self.name) from e

    def install(self) -> None:
        try:
            for table in self.tables:
                table.create(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise StoreLifecycleFailure(f"Could not install table {self.name}: {e}", table_name=self.name) from e
        logger.info(f"Installed table {self.name}")

    def uninstall(self) -> None:
        try:
            # Dependent tables go first
            for table in reversed(self.tables):
                table.drop(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise StoreLifecycleFailure(f"Could not drop table {self.name}: {e}", table_name=self.name) from e
        logger.info(f"Dropped table {self.name}")


class ResourcesTable(DatabaseTable):
    models = (StoredResource,)


class UsedCSSTable(DatabaseTable):
    models = (UsedCSS,)


class ResourceQueueTable(DatabaseTable):
    models = (ResourceQueueBatch, ResourceQueueItem)


DROPPED = "dropped"
INSTALLED = "installed"
ABSENT = "absent"
FAILED = "failed"


class Database:
    """
    Lifecycle of the rucss tables, handled table by table.

    The pending-work queue is installed alongside the resources and used-CSS
    tables so a freshly installed store can accept batches. Dropping leaves
    the queue in place; only the two rucss tables are dropped.
    """

    def __init__(
        self,
        resources_table: ResourcesTable,
        used_css_table: UsedCSSTable,
        queue_table: Optional[ResourceQueueTable] = None,
    ):
        self.resources_table = resources_table
        self.used_css_table = used_css_table
        self.queue_table = queue_table or ResourceQueueTable(resources_table._engine)

    def drop_rucss_database_tables(self) -> Dict[str, str]:
        """Drop every table that exists. One table failing does not stop the other."""
        results = {}
        for table in (self.resources_table, self.used_css_table):
            try:
                if not table.exists():
                    results[table.name] = ABSENT
                    continue
                table.uninstall()
                results[table.name] = DROPPED
            except StoreLifecycleFailure as e:
                logger.error(f"Failed to drop table {table.name}: {e}", extra={"context": {"table": table.name}})
                results[table.name] = FAILED
        return results

    def install_rucss_database_tables(self) -> Dict[str, str]:
        results = {}
        for table in (self.resources_table, self.used_css_table, self.queue_table):
            try:
                table.install()
                results[table.name] = INSTALLED
            except StoreLifecycleFailure as e:
                logger.error(f"Failed to install table {table.name}: {e}", extra={"context": {"table": table.name}})
                results[table.name] = FAILED
        return results
