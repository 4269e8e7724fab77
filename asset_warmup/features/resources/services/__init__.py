"""
Resource Warmup Services

Organized by responsibility, in the order a page goes through them:

1. scanning/ - Finding references in rendered HTML
   - html_scanner.py: <link rel=stylesheet href> and <script src> matching

2. cache/ - Third-party assets
   - assets_cache.py: RemoteAssetCache contract + filesystem/httpx implementation

3. resolution/ - Reference -> content
   - content_resolver.py: protocol defaulting, external vs local, file reads

4. collection/ - Entry point for the host
   - collection_pipeline.py: scan, resolve, build the batch, enqueue + dispatch

5. queue/ - Out-of-band persistence
   - persistence_queue.py: durable pending list, Celery dispatch, drain loop

6. storage/ - Tables
   - resource_store.py: idempotent upsert keyed by url
   - database.py: exists/install/uninstall per table, drop-all
"""
