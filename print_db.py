"""Print the optimizer state of every IMAGE row in the project's database.

For each row this prints the id, owner, MIME type, payload size, whether
the optimizer has finished with it and how many attempts failed, followed by
a short per-state summary. It reuses the same `DATABASE_DIR` behavior as the
application via `utils.database_init.AsyncDatabaseInitializer`.

Run: set the `DATABASE_DIR` environment variable and run `python print_db.py`.
"""
import asyncio
from collections import Counter

from dal.image_dal import ImageDAL
from models.image_record import ImageRecord
from utils.database_init import AsyncDatabaseInitializer

PAGE_SIZE = 200


def format_record(record: ImageRecord) -> str:
    """Return a one-line description of an IMAGE row.

    Args:
        record: The row to describe.

    Returns:
        Text such as `id=... cat=... mime=image/webp bytes=1234 optimized failures=0`.
    """
    state = "optimized" if record.optimized else "pending"
    mime = record.mime or "-"
    return (
        f"id={record.id} cat={record.cat_id} mime={mime} "
        f"bytes={len(record.data)} {state} failures={record.optimize_failures}"
    )


def record_state(record: ImageRecord) -> str:
    """Classify a row for the summary: empty, pending, failing or optimized."""
    if record.optimized:
        return "optimized"
    if not record.data:
        return "empty"
    if record.optimize_failures:
        return "failing"
    return "pending"


async def main() -> None:
    """Print every IMAGE row page by page, then a count per state."""
    dal = ImageDAL(AsyncDatabaseInitializer())
    counts: Counter = Counter()
    offset = 0
    while True:
        records = await dal.list_images(limit=PAGE_SIZE, offset=offset)
        if not records:
            break
        for record in records:
            print(format_record(record))
            counts[record_state(record)] += 1
        offset += len(records)

    if not counts:
        print("No images.")
        return
    print()
    print("Summary: " + ", ".join(f"{state}={n}" for state, n in sorted(counts.items())))


if __name__ == "__main__":
    asyncio.run(main())
