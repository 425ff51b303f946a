from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class ImageRecord:
    """In-memory representation of a row in the IMAGE table.

    Attributes:
        id: UUID primary key (None for records not yet inserted).
        cat_id: Owning cat profile id.
        url: Optional external URL; URL-only images carry no bytes.
        data: Raw image bytes, possibly empty.
        mime: MIME type describing `data`.
        title: Optional caption.
        optimized: True once the optimizer has finished with this row.
        optimize_failures: Number of failed optimization attempts.
        created_at: Unix timestamp (seconds) when the row was inserted.
        updated_at: Unix timestamp (seconds) of the last data/mime/flag change.
    """

    id: Optional[str]
    cat_id: str
    data: bytes = b""
    mime: str = ""
    url: Optional[str] = None
    title: Optional[str] = None
    optimized: bool = False
    optimize_failures: int = 0
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
