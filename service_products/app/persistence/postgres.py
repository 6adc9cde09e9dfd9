"""
PostgreSQL persistence layer for the Products Service.
"""

import asyncio
from decimal import Decimal
from typing import List, Optional

import asyncpg

from shared.config import ServiceConfig
from shared.logging import get_logger
from ..models import Product, ProductDraft


def _to_numeric(value: float) -> Decimal:
    return Decimal(str(value))


PRODUCT_COLUMNS = "id, name, description, price, stock, category, image_url, created_at, updated_at"

SCHEMA = """
    CREATE TABLE IF NOT EXISTS products (
        id SERIAL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        description TEXT,
        price DECIMAL(10, 2) NOT NULL,
        stock INTEGER NOT NULL DEFAULT 0,
        category VARCHAR(100),
        image_url VARCHAR(500),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_products_category ON products(category);
    CREATE INDEX IF NOT EXISTS idx_products_price ON products(price);
"""


class ProductStore:
    """PostgreSQL store of record for products.

    The pool is shared by every in-flight request; asyncpg pools are safe for
    concurrent use so callers never lock around it.
    """

    def __init__(self, config: ServiceConfig):
        self.config = config
        self.logger = get_logger("products.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the pool, verify connectivity and ensure the schema exists.

        Any failure propagates: the service cannot start without its store.
        """
        self.pool = await asyncpg.create_pool(
            host=self.config.db_host,
            port=self.config.db_port,
            user=self.config.db_user,
            password=self.config.db_password,
            database=self.config.db_name,
            min_size=self.config.db_pool_min_size,
            max_size=self.config.db_pool_max_size,
            max_inactive_connection_lifetime=self.config.db_conn_max_lifetime,
            command_timeout=self.config.db_command_timeout,
            timeout=self.config.db_connect_timeout,
        )

        await self.ping(timeout=self.config.db_connect_timeout)
        await self._create_tables()

        self.logger.info(
            "PostgreSQL store started",
            host=self.config.db_host,
            database=self.config.db_name,
            max_size=self.config.db_pool_max_size,
        )

    async def stop(self):
        """Close the pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL store stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA)

    async def ping(self, timeout: Optional[float] = None):
        """Round-trip a trivial query; raises on failure or timeout."""
        if self.pool is None:
            raise ConnectionError("store pool is not open")
        await asyncio.wait_for(self.pool.fetchval("SELECT 1"), timeout=timeout)

    async def list_recent(self, limit: int) -> List[Product]:
        rows = await self.pool.fetch(
            f"""
            SELECT {PRODUCT_COLUMNS}
            FROM products
            ORDER BY created_at DESC
            LIMIT $1
            """,
            limit,
        )
        return [self._row_to_product(row) for row in rows]

    async def fetch(self, product_id: int) -> Optional[Product]:
        row = await self.pool.fetchrow(
            f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id = $1",
            product_id,
        )
        if row is None:
            return None
        return self._row_to_product(row)

    async def insert(self, draft: ProductDraft) -> Product:
        """Insert a product; the store assigns id and both timestamps and rounds the price."""
        row = await self.pool.fetchrow(
            """
            INSERT INTO products (name, description, price, stock, category, image_url)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING id, price, created_at, updated_at
            """,
            draft.name, draft.description, _to_numeric(draft.price), draft.stock,
            draft.category, draft.image_url,
        )
        # price comes back as stored, after DECIMAL(10, 2) rounding
        return Product(
            **draft.model_dump(exclude={"price"}),
            id=row["id"],
            price=float(row["price"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def update(self, product_id: int, draft: ProductDraft) -> bool:
        """Replace every mutable field. Returns False when no row matched."""
        result = await self.pool.execute(
            """
            UPDATE products
            SET name = $1, description = $2, price = $3, stock = $4, category = $5,
                image_url = $6, updated_at = CURRENT_TIMESTAMP
            WHERE id = $7
            """,
            draft.name, draft.description, _to_numeric(draft.price), draft.stock,
            draft.category, draft.image_url, product_id,
        )
        return self._rows_affected(result) > 0

    async def delete(self, product_id: int) -> bool:
        """Delete a product. Returns False when no row matched."""
        result = await self.pool.execute("DELETE FROM products WHERE id = $1", product_id)
        return self._rows_affected(result) > 0

    async def search(self, query: str, category: str, limit: int) -> List[Product]:
        """Conjunctive filter on name/description substring and exact category."""
        sql = f"SELECT {PRODUCT_COLUMNS} FROM products WHERE 1=1"
        args: list = []

        if query:
            args.append(f"%{query}%")
            sql += f" AND (name ILIKE ${len(args)} OR description ILIKE ${len(args)})"

        if category:
            args.append(category)
            sql += f" AND category = ${len(args)}"

        args.append(limit)
        sql += f" ORDER BY created_at DESC LIMIT ${len(args)}"

        rows = await self.pool.fetch(sql, *args)
        return [self._row_to_product(row) for row in rows]

    @staticmethod
    def _rows_affected(status: str) -> int:
        # asyncpg returns the command tag, e.g. "UPDATE 1" or "DELETE 0"
        try:
            return int(status.rsplit(" ", 1)[-1])
        except (AttributeError, ValueError):
            return 0

    @staticmethod
    def _row_to_product(row) -> Product:
        return Product(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            price=float(row["price"]),
            stock=row["stock"],
            category=row["category"],
            image_url=row["image_url"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
