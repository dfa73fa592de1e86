from .lexorank import MAX_RANK, MIN_RANK, generate_rank, midpoint
from .List_Ordering import (
    ensure_ranks,
    is_folder,
    reorder,
    reorder_folder,
    reorder_list,
    sort_by_rank,
)

__all__ = [
    "MIN_RANK", "MAX_RANK", "generate_rank", "midpoint",
    "sort_by_rank", "ensure_ranks", "reorder", "reorder_list", "reorder_folder", "is_folder",
]
