# Sync_Merge.py
# Description: Last-write-wins merge of local and remote record collections.
#
# Imports
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from listbook.Constants import KEY_DELETED, KEY_ID, KEY_UPDATED_AT
from listbook.Ordering.List_Ordering import sort_by_rank
from listbook.sync_api.utils import add_timestamps
from listbook.Utils.timestamps import parse_timestamp, utc_now_iso
#
########################################################################################################################
#
# Functions:

Record = Dict[str, Any]


def is_deleted(record: Record) -> bool:
    return bool(record.get(KEY_DELETED))


def filter_deleted_lists(records: Sequence[Record]) -> List[Record]:
    """Drops tombstones; everything shown to the user goes through this."""
    return [r for r in records if not is_deleted(r)]


def merge_lists(local: Sequence[Record], remote: Sequence[Record]) -> List[Record]:
    """
    Merges the remote collection into the local one, record by record.

    - Both sides have the record: local wins when its `updated_at` is the same
      or newer; remote wins only when strictly newer.
    - Local tombstone: stays deleted unless the remote copy is strictly newer,
      in which case the remote copy resurrects it. The tombstone itself stays in
      the result so it keeps propagating until garbage collection removes it.
    - Remote tombstone strictly newer than a live local record deletes it.
    - Local-only records are kept; remote-only live records are appended;
      remote-only tombstones are ignored.

    The result is re-sorted for display with `sort_by_rank`.
    """
    remote_by_id: Dict[str, Record] = {}
    for record in remote:
        record_id = record.get(KEY_ID)
        if record_id is not None:
            remote_by_id[record_id] = record

    merged: List[Record] = []
    seen_ids = set()
    remote_wins = 0

    for local_record in local:
        record_id = local_record.get(KEY_ID)
        seen_ids.add(record_id)
        remote_record = remote_by_id.get(record_id)

        if remote_record is None:
            merged.append(local_record)
            continue

        local_ts = parse_timestamp(local_record.get(KEY_UPDATED_AT))
        remote_ts = parse_timestamp(remote_record.get(KEY_UPDATED_AT))
        if remote_ts > local_ts:
            merged.append(remote_record)
            remote_wins += 1
        else:
            merged.append(local_record)

    appended = 0
    for record_id, remote_record in remote_by_id.items():
        if record_id in seen_ids or is_deleted(remote_record):
            continue
        merged.append(remote_record)
        appended += 1

    logger.debug(f"merge_lists: {len(local)} local, {len(remote)} remote -> {len(merged)} merged "
                 f"({remote_wins} remote newer, {appended} remote-only).")
    return sort_by_rank(merged)


def partition_expired_tombstones(records: Sequence[Record],
                                 retention: timedelta,
                                 now: Optional[datetime] = None) -> Tuple[List[Record], int]:
    """
    Splits off tombstones whose `updated_at` is older than `retention`.

    Returns:
        (kept_records, removed_count). Live records are always kept.
    """
    cutoff = parse_timestamp(now or utc_now_iso()) - retention
    kept = [r for r in records if not (is_deleted(r) and parse_timestamp(r.get(KEY_UPDATED_AT)) < cutoff)]
    return kept, len(records) - len(kept)

#
# End of Sync_Merge.py
########################################################################################################################
