import os
import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite


class AsyncDatabaseInitializer:
    """
    Manage the async SQLite image store.

    - The database file is located at <DATABASE_DIR>/app.db unless an explicit
      `db_path` is given (tests pass a temporary file).
    - DATABASE_DIR is required when `db_path` is omitted. A RuntimeError is
      raised if it is missing or invalid (not a directory and cannot be created).
    - On the first call to `ensure_database()` for a given instance:
        * The IMAGE table and its indexes are created if missing.
        * Optimizer columns are added to tables created by older schemas,
          and NULL optimizer flags they carry are reset to 0.
      Existing rows are kept: a restart must never reset the `optimized` flags.
    - Subsequent calls to `ensure_database()` on the same instance are no-ops,
      so it is safe for `connection()` to call it.
    """

    # Columns added after the first IMAGE schema, with their DDL.
    _LATE_COLUMNS = {
        "optimized": "INTEGER NOT NULL DEFAULT 0",
        "optimize_failures": "INTEGER NOT NULL DEFAULT 0",
        "updated_at": "INTEGER",
    }

    def __init__(self, db_path: Optional[Path | str] = None) -> None:
        if db_path is not None:
            db_file = Path(db_path).expanduser()
            db_dir = db_file.parent
        else:
            env_dir = os.getenv("DATABASE_DIR")

            if env_dir is None or not env_dir.strip():
                raise RuntimeError(
                    "DATABASE_DIR environment variable must be set to a writable "
                    "directory path where the SQLite database file will be stored."
                )

            db_dir = Path(env_dir).expanduser()

            # If the path exists but is not a directory, that's a configuration error.
            if db_dir.exists() and not db_dir.is_dir():
                raise RuntimeError(
                    f"DATABASE_DIR={env_dir!r} points to a file, not a directory "
                    f"({db_dir}). Please set DATABASE_DIR to a directory path."
                )
            db_file = db_dir / "app.db"

        try:
            db_dir.mkdir(parents=True, exist_ok=True)
        except Exception as exc:
            raise RuntimeError(
                f"Failed to create or access database directory at {db_dir}"
            ) from exc

        self.db_dir = db_dir
        self.db_path = db_file

        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def ensure_database(self) -> None:
        """
        Ensure the IMAGE schema exists at `self.db_path`.

        Subsequent calls on the same instance are no-ops.
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            max_attempts = 3
            for attempt in range(1, max_attempts + 1):
                try:
                    async with aiosqlite.connect(self.db_path) as db:
                        await db.execute(
                            """
                            CREATE TABLE IF NOT EXISTS IMAGE (
                                id TEXT PRIMARY KEY,
                                cat_id TEXT NOT NULL,
                                url TEXT,
                                data BLOB,
                                mime TEXT,
                                title TEXT,
                                optimized INTEGER NOT NULL DEFAULT 0,
                                optimize_failures INTEGER NOT NULL DEFAULT 0,
                                created_at INTEGER NOT NULL,
                                updated_at INTEGER
                            )
                            """
                        )

                        # Bring older tables up to date before indexing new columns.
                        cur = await db.execute("PRAGMA table_info(IMAGE)")
                        cols = await cur.fetchall()
                        col_names = {col[1] for col in cols}
                        for name, ddl in self._LATE_COLUMNS.items():
                            if name not in col_names:
                                await db.execute(f"ALTER TABLE IMAGE ADD COLUMN {name} {ddl}")
                        # Older tables may carry nullable optimizer columns.
                        await db.execute("UPDATE IMAGE SET optimized = 0 WHERE optimized IS NULL")
                        await db.execute(
                            "UPDATE IMAGE SET optimize_failures = 0 WHERE optimize_failures IS NULL"
                        )

                        await db.execute(
                            "CREATE INDEX IF NOT EXISTS idx_image_cat_id ON IMAGE(cat_id)"
                        )
                        await db.execute(
                            "CREATE INDEX IF NOT EXISTS idx_image_optimized ON IMAGE(optimized, created_at)"
                        )
                        await db.commit()
                    break
                except FileNotFoundError:
                    # On some platforms a transient missing file error may occur; retry a few times.
                    if attempt >= max_attempts:
                        raise
                    await asyncio.sleep(0.1 * attempt)

            self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Async context manager yielding an `aiosqlite.Connection`.

        The schema is created on first use via `ensure_database()`.
        """
        await self.ensure_database()
        conn = await aiosqlite.connect(self.db_path)
        try:
            yield conn
        finally:
            await conn.close()
