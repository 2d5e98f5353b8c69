"""In-memory pagination of computed join rows."""
from typing import List, Sequence, TypeVar

T = TypeVar('T')


def paginate(rows: Sequence[T], from_: int, size: int) -> List[T]:
    """Slice an already computed row list. Never re-fetches; out-of-range pages are empty."""
    if from_ < 0:
        raise ValueError(f"from must be >= 0, got {from_}")
    if size <= 0:
        raise ValueError(f"size must be > 0, got {size}")
    return list(rows[from_:from_ + size])
