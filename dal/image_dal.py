"""Async Data Access Layer for the IMAGE table.

Provides ImageDAL class with the async operations the image optimizer
consumes, compatible with `utils.database_init.AsyncDatabaseInitializer`.
"""

from __future__ import annotations

import time
import uuid
from typing import List, Optional, Sequence

from models.image_record import ImageRecord
from utils.database_init import AsyncDatabaseInitializer


class ImageDAL:
    """Data access layer for IMAGE records.

    The constructor accepts an `AsyncDatabaseInitializer` (or any object
    exposing an async `connection()` context manager that yields an
    `aiosqlite.Connection`).

    Every optimizer write carries the same pending guard as
    `list_unoptimized` (flag 0 or NULL), so a row that was already finished is never rewritten even when it is selected twice.
    """

    _COLUMNS = (
        "id",
        "cat_id",
        "url",
        "data",
        "mime",
        "title",
        "optimized",
        "optimize_failures",
        "created_at",
        "updated_at",
    )
    _COLUMN_LIST = ", ".join(_COLUMNS)
    _PLACEHOLDERS = ", ".join("?" for _ in _COLUMNS)
    # A NULL flag left by older schemas counts as not optimized.
    _PENDING = "(optimized = 0 OR optimized IS NULL)"

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def create_image(self, record: ImageRecord) -> str:
        """Insert a new IMAGE row and return its id.

        Args:
            record: ImageRecord to insert. A UUID is generated when `id` is None.

        Returns:
            The string primary key of the created row.
        """
        image_id = record.id or str(uuid.uuid4())
        created_at = record.created_at or int(time.time())
        updated_at = record.updated_at or created_at

        async with self._db.connection() as conn:
            await conn.execute(
                f"INSERT INTO IMAGE ({self._COLUMN_LIST}) VALUES ({self._PLACEHOLDERS})",
                (
                    image_id,
                    record.cat_id,
                    record.url,
                    record.data,
                    record.mime,
                    record.title,
                    int(record.optimized),
                    record.optimize_failures,
                    created_at,
                    updated_at,
                ),
            )
            await conn.commit()
        return image_id

    async def get_image_by_id(self, image_id: str) -> Optional[ImageRecord]:
        """Return ImageRecord for `image_id`, or None if not found."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMN_LIST} FROM IMAGE WHERE id = ?",
                (image_id,),
            )
            row = await cur.fetchone()
            return self._row_to_record(row) if row else None

    async def list_images(self, limit: int = 100, offset: int = 0) -> List[ImageRecord]:
        """List IMAGE rows, oldest first, with optional paging.

        Args:
            limit: Maximum number of rows to return.
            offset: Rows to skip.
        """
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMN_LIST} FROM IMAGE ORDER BY created_at, id LIMIT ? OFFSET ?",
                (limit, offset),
            )
            rows = await cur.fetchall()
            return [self._row_to_record(r) for r in rows]

    async def list_unoptimized(self, limit: int) -> List[ImageRecord]:
        """Return up to `limit` rows not yet optimized, oldest first.

        The (created_at, id) ordering is stable, so every eligible row is
        eventually reached while a backlog drains.
        """
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMN_LIST} FROM IMAGE "
                f"WHERE {self._PENDING} "
                "ORDER BY created_at, id LIMIT ?",
                (limit,),
            )
            rows = await cur.fetchall()
            return [self._row_to_record(r) for r in rows]

    async def mark_optimized_empty(self, image_id: str) -> bool:
        """Mark a row with no image bytes as optimized. Returns True if a row changed."""
        return await self._mark_optimized(image_id)

    async def mark_optimized_no_change(self, image_id: str) -> bool:
        """Mark a row optimized while keeping its data and MIME. Returns True if a row changed."""
        return await self._mark_optimized(image_id)

    async def update_optimized_data(self, image_id: str, data: bytes, mime: str) -> bool:
        """Replace data and MIME with the optimized encoding and mark the row optimized."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "UPDATE IMAGE SET data = ?, mime = ?, optimized = 1, updated_at = ? "
                f"WHERE id = ? AND {self._PENDING}",
                (data, mime, int(time.time()), image_id),
            )
            await conn.commit()
            return cur.rowcount > 0

    async def record_optimize_failure(self, image_id: str) -> int:
        """Increment the failed-attempt counter and return the new count (0 if the row is gone)."""
        async with self._db.connection() as conn:
            await conn.execute(
                "UPDATE IMAGE SET optimize_failures = COALESCE(optimize_failures, 0) + 1 "
                f"WHERE id = ? AND {self._PENDING}",
                (image_id,),
            )
            await conn.commit()
            cur = await conn.execute(
                "SELECT optimize_failures FROM IMAGE WHERE id = ?",
                (image_id,),
            )
            row = await cur.fetchone()
            return int(row[0]) if row and row[0] is not None else 0

    async def _mark_optimized(self, image_id: str) -> bool:
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"UPDATE IMAGE SET optimized = 1, updated_at = ? WHERE id = ? AND {self._PENDING}",
                (int(time.time()), image_id),
            )
            await conn.commit()
            return cur.rowcount > 0

    @staticmethod
    def _row_to_record(row: Sequence[object]) -> ImageRecord:
        """Convert a DB row tuple into an ImageRecord."""
        return ImageRecord(
            id=row[0],
            cat_id=row[1],
            url=row[2],
            data=bytes(row[3]) if row[3] is not None else b"",
            mime=row[4] or "",
            title=row[5],
            optimized=bool(row[6]),
            optimize_failures=int(row[7] or 0),
            created_at=row[8],
            updated_at=row[9],
        )
