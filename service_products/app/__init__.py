"""
Products Service package for the product catalog.

This package serves product records over HTTP from PostgreSQL, with Redis
as a look-aside cache. It provides:

- app.main: API surface, probes and service wiring.
- app.repository: Cache-aside reads and write-then-invalidate writes.
- app.persistence: PostgreSQL store of record.
- app.cache: Redis-backed cache that never fails a request.
- app.middleware: Request metrics and access logging.
- app.health: Liveness, readiness and startup probes.
- app.lifecycle: Startup, drain and shutdown sequencing.

Guidelines:
- The service is stateless; rely on external cache/DB.
- The store is the only source of truth; the cache only mirrors it.
"""
