# List_Ordering.py
# Description: Explicit list ordering on top of lexorank ranks.
#
# Display order:
#   1. Top-level items (no folder) and folder headers, sorted by rank
#   2. After each folder header, that folder's members sorted by rank
#
# Moving a folder therefore only changes the folder's rank; its members follow
# because they are always spliced in after their header.
#
# Imports
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from listbook.Constants import (
    KEY_FOLDER,
    KEY_ID,
    KEY_OPEN,
    KEY_RANK,
    KEY_TYPE,
    KEY_UPDATED_AT,
    RECORD_TYPE_FOLDER,
)
from listbook.Ordering.lexorank import generate_rank
from listbook.Utils.timestamps import utc_now_iso
#
########################################################################################################################
#
# Functions:

Record = Dict[str, Any]


def is_folder(record: Optional[Record]) -> bool:
    return bool(record) and record.get(KEY_TYPE) == RECORD_TYPE_FOLDER


def _rank_sort_key(record: Record) -> Tuple[bool, str]:
    # Records without a rank sort last; sorted() is stable so they keep input order.
    rank = record.get(KEY_RANK)
    return (not rank, rank or "")


def sort_records_by_rank(records: Iterable[Record]) -> List[Record]:
    return sorted(records, key=_rank_sort_key)


def _folder_ids(records: Iterable[Record]) -> Set[str]:
    return {r[KEY_ID] for r in records if is_folder(r)}


def is_top_level(record: Record, folder_ids: Set[str]) -> bool:
    """Folder headers, ungrouped records and records whose folder no longer exists."""
    if is_folder(record):
        return True
    folder_id = record.get(KEY_FOLDER)
    return folder_id is None or folder_id not in folder_ids


def folder_members(records: Iterable[Record], folder_id: str, exclude_id: Optional[str] = None) -> List[Record]:
    return [
        r for r in records
        if not is_folder(r) and r.get(KEY_FOLDER) == folder_id and r.get(KEY_ID) != exclude_id
    ]


def sort_by_rank(records: Sequence[Record]) -> List[Record]:
    """
    Sort records by rank for display, grouping folder contents after their folder.

    Orphaned folder references (the folder no longer exists) render as top-level.
    """
    folder_ids = _folder_ids(records)
    top_level = [r for r in records if is_top_level(r, folder_ids)]

    result: List[Record] = []
    for item in sort_records_by_rank(top_level):
        result.append(item)
        if is_folder(item):
            result.extend(sort_records_by_rank(folder_members(records, item[KEY_ID])))
    return result


def ensure_ranks(records: Sequence[Record]) -> Tuple[List[Record], bool]:
    """
    Assign ranks (and, for legacy records, folders) to records that lack them.

    Walks the records in their current order and generates ranks that preserve
    that order. A legacy record without a folder inherits the nearest folder
    header seen before it in this pass.

    Returns:
        (records, changed) where `changed` tells whether anything was assigned.
    """
    last_rank: Optional[str] = None
    current_folder: Optional[str] = None
    changed = False
    result: List[Record] = []

    for index, record in enumerate(records):
        if is_folder(record):
            current_folder = record[KEY_ID]

        if record.get(KEY_RANK):
            last_rank = record[KEY_RANK]
            result.append(record)
            continue

        next_rank = next((r[KEY_RANK] for r in records[index + 1:] if r.get(KEY_RANK)), None)
        new_rank = generate_rank(last_rank, next_rank)
        last_rank = new_rank
        changed = True

        updated = {**record, KEY_RANK: new_rank, KEY_UPDATED_AT: utc_now_iso()}
        if is_folder(record):
            updated[KEY_FOLDER] = None
        elif record.get(KEY_FOLDER) is None:
            updated[KEY_FOLDER] = current_folder
        result.append(updated)

    if changed:
        logger.debug(f"ensure_ranks assigned ranks to {sum(1 for a, b in zip(records, result) if a is not b)} record(s).")
    return result, changed


def _nearest_folder_before(sequence: Sequence[Record], position: int) -> Optional[Record]:
    for i in range(position - 1, -1, -1):
        if is_folder(sequence[i]):
            return sequence[i]
    return None


def _max_rank(records: Iterable[Record]) -> Optional[str]:
    ranks = [r[KEY_RANK] for r in records if r.get(KEY_RANK)]
    return max(ranks) if ranks else None


def _in_group(record: Record, group_id: Optional[str], folder_ids: Set[str]) -> bool:
    """Whether `record` is a sibling inside `group_id` (None = top level)."""
    if group_id is None:
        return is_top_level(record, folder_ids)
    return not is_folder(record) and record.get(KEY_FOLDER) == group_id


def _replace(records: Sequence[Record], target_id: str, updated: Record) -> List[Record]:
    return [updated if r.get(KEY_ID) == target_id else r for r in records]


def reorder_list(records: Sequence[Record], source_index: int, dest_index: int,
                 all_records: Optional[Sequence[Record]] = None) -> List[Record]:
    """
    Move a non-folder record: generate a rank between its new neighbours and
    set its folder to the nearest folder header before the drop position.

    Args:
        records: The displayed sequence (already sorted by rank).
        source_index: Index the record is dragged from.
        dest_index: Index it is dropped at, counted with the record removed.
        all_records: Full collection, when `records` omits the members of collapsed folders.
    """
    item = records[source_index]
    without = [r for i, r in enumerate(records) if i != source_index]
    if not 0 <= dest_index <= len(without):
        raise IndexError(f"dest_index {dest_index} out of range for {len(records)} records")

    folder_ids = _folder_ids(records)
    header = _nearest_folder_before(without, dest_index)
    new_folder = header[KEY_ID] if header else None
    prev = without[dest_index - 1] if dest_index > 0 else None

    lower: Optional[str] = None
    upper: Optional[str] = None
    if is_folder(prev) and not prev.get(KEY_OPEN, True):
        # Dropping right after a collapsed folder: land after its hidden contents.
        lower = _max_rank(folder_members(all_records or records, prev[KEY_ID], exclude_id=item.get(KEY_ID)))
    else:
        for i in range(dest_index - 1, -1, -1):
            candidate = without[i]
            if new_folder is not None and candidate is header:
                break
            if _in_group(candidate, new_folder, folder_ids):
                lower = candidate.get(KEY_RANK)
                break
        for candidate in without[dest_index:]:
            if _in_group(candidate, new_folder, folder_ids):
                upper = candidate.get(KEY_RANK)
                break
            if new_folder is not None:
                # Group blocks are contiguous; anything else ends the group
                break

    if lower and upper and not lower < upper:
        # Neighbours from a stale or unsorted sequence; fall back to appending after lower.
        logger.warning(f"reorder_list: neighbour ranks out of order ({lower!r} >= {upper!r}); appending after lower.")
        upper = None

    new_rank = generate_rank(lower, upper)
    updated = {**item, KEY_RANK: new_rank, KEY_FOLDER: new_folder, KEY_UPDATED_AT: utc_now_iso()}
    return _replace(records, item[KEY_ID], updated)


def reorder_folder(records: Sequence[Record], source_index: int, dest_index: int) -> List[Record]:
    """
    Move a folder header. Only the folder's rank changes; its members follow
    because `sort_by_rank` splices them in after the header.
    """
    folder = records[source_index]
    if not is_folder(folder):
        return reorder_list(records, source_index, dest_index)
    if not 0 <= dest_index <= len(records):
        raise IndexError(f"dest_index {dest_index} out of range for {len(records)} records")

    folder_ids = _folder_ids(records)
    content_ids = {r[KEY_ID] for r in folder_members(records, folder[KEY_ID])}
    others = [r for r in records if r[KEY_ID] != folder[KEY_ID] and r[KEY_ID] not in content_ids]

    # Where the folder lands among "others": count how many of them sit before dest_index
    insert_at = sum(
        1 for r in records[:dest_index]
        if r[KEY_ID] != folder[KEY_ID] and r[KEY_ID] not in content_ids
    )

    # Folder headers live in top-level rank space; skip members of other folders.
    lower = next(
        (r.get(KEY_RANK) for r in reversed(others[:insert_at]) if is_top_level(r, folder_ids)),
        None,
    )
    upper = next(
        (r.get(KEY_RANK) for r in others[insert_at:] if is_top_level(r, folder_ids)),
        None,
    )
    if lower and upper and not lower < upper:
        logger.warning(f"reorder_folder: neighbour ranks out of order ({lower!r} >= {upper!r}); appending after lower.")
        upper = None

    new_rank = generate_rank(lower, upper)
    updated = {**folder, KEY_RANK: new_rank, KEY_UPDATED_AT: utc_now_iso()}
    return _replace(records, folder[KEY_ID], updated)


def reorder(records: Sequence[Record], source_index: int, dest_index: int,
            all_records: Optional[Sequence[Record]] = None) -> List[Record]:
    """Move the record at `source_index` to `dest_index` in the displayed sequence."""
    if source_index == dest_index:
        return list(records)
    if is_folder(records[source_index]):
        return reorder_folder(records, source_index, dest_index)
    return reorder_list(records, source_index, dest_index, all_records)

#
# End of List_Ordering.py
########################################################################################################################
