# List_Library.py
# Description: User-facing mutations of the local record collection.
#
# Every mutation reads the stored collection, applies the change, writes the
# whole collection back (tombstones included) and hands it to the sync engine.
#
# Imports
import uuid
from typing import Any, Dict, List, Optional, Sequence
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from listbook.Constants import (
    KEY_DELETED,
    KEY_FOLDER,
    KEY_ID,
    KEY_OPEN,
    KEY_RANK,
    KEY_TYPE,
    KEY_UPDATED_AT,
    RECORD_TYPE_FOLDER,
    RECORD_TYPE_LIST,
    SYNC_ONLY_KEYS,
)
from listbook.DB.List_Store import ListStore
from listbook.Ordering.lexorank import generate_rank
from listbook.Ordering.List_Ordering import ensure_ranks, is_folder, reorder, sort_by_rank
from listbook.Sync.Sync_Merge import filter_deleted_lists
from listbook.Utils.timestamps import utc_now_iso
#
########################################################################################################################
#
# Functions:

Record = Dict[str, Any]


def _strip_sync_only_fields(record: Record) -> Record:
    return {k: v for k, v in record.items() if k not in SYNC_ONLY_KEYS}


def has_meaningful_change(current: Record, updated: Record) -> bool:
    """True when the records differ in anything besides sync bookkeeping fields."""
    return _strip_sync_only_fields(current) != _strip_sync_only_fields(updated)


def update_lists_folder(records: Sequence[Record]) -> List[Record]:
    """
    Legacy folder assignment by position: every non-folder record belongs to the
    nearest folder header above it. Only records whose folder actually changes
    get a fresh `updated_at`.
    """
    current_folder: Optional[str] = None
    stamp = utc_now_iso()
    result: List[Record] = []
    for record in records:
        if is_folder(record):
            current_folder = record[KEY_ID]
            result.append(record)
            continue
        if record.get(KEY_FOLDER) != current_folder:
            result.append({**record, KEY_FOLDER: current_folder, KEY_UPDATED_AT: stamp})
        else:
            result.append(record)
    return result


def _last_top_level_rank(records: Sequence[Record]) -> Optional[str]:
    ranks = [
        r[KEY_RANK] for r in records
        if r.get(KEY_RANK) and (is_folder(r) or r.get(KEY_FOLDER) is None)
    ]
    return max(ranks) if ranks else None


class ListLibrary:
    """
    The local list collection as the UI sees it.

    Args:
        store: Persistence for the collection.
        sync_engine: Optional `ListSyncEngine`; every persisted change is pushed to it.
    """

    def __init__(self, store: ListStore, sync_engine=None):
        self.store = store
        self.sync_engine = sync_engine

    def _persist(self, records: List[Record]) -> None:
        self.store.save_lists(records)
        if self.sync_engine is not None:
            self.sync_engine.push(records)

    # --- Reads ---

    def get_lists(self, include_deleted: bool = False) -> List[Record]:
        records = self.store.load_lists()
        return records if include_deleted else filter_deleted_lists(records)

    def get_list(self, list_id: str) -> Optional[Record]:
        return next((r for r in self.store.load_lists() if r.get(KEY_ID) == list_id), None)

    def get_display_lists(self) -> List[Record]:
        """Visible records in display order. Legacy records get ranks on the way (persisted)."""
        records = self.store.load_lists()
        ranked, changed = ensure_ranks(records)
        if changed:
            logger.info("Assigned ranks to legacy records; persisting.")
            self._persist(ranked)
        return sort_by_rank(filter_deleted_lists(ranked))

    async def sync_from_remote(self) -> List[Record]:
        """
        Startup sync: pulls the remote collection into the stored one, saves the
        merge when the visible records changed, then collects expired tombstones.

        Returns:
            Visible records in display order. Without a sync engine, or when the
            pull fails, this is the local collection.
        """
        local = self.store.load_lists()
        if self.sync_engine is None:
            return sort_by_rank(filter_deleted_lists(local))

        merged = await self.sync_engine.pull(local)
        visible = filter_deleted_lists(merged)
        if visible != filter_deleted_lists(local):
            logger.info(f"Remote changes merged; saving {len(merged)} record(s).")
            self.store.save_lists(merged)
        self.sync_engine.cleanup_deleted_lists()
        return sort_by_rank(visible)

    @staticmethod
    def filter_deleted_lists(records: Sequence[Record]) -> List[Record]:
        return filter_deleted_lists(records)

    @staticmethod
    def update_lists_folder(records: Sequence[Record]) -> List[Record]:
        return update_lists_folder(records)

    # --- Mutations ---

    def update_list(self, updated: Record) -> Optional[Record]:
        """
        Shallow-merges `updated` onto the stored record with the same id.

        Returns:
            The stored record, or None if it does not exist or nothing meaningful changed.
        """
        records = self.store.load_lists()
        list_id = updated.get(KEY_ID)
        current = next((r for r in records if r.get(KEY_ID) == list_id), None)
        if current is None:
            logger.debug(f"update_list: no record with id {list_id!r}")
            return None

        merged = {**current, **updated}
        if not has_meaningful_change(current, merged):
            return None

        stamped = {**merged, KEY_UPDATED_AT: utc_now_iso()}
        self._persist([stamped if r.get(KEY_ID) == list_id else r for r in records])
        return stamped

    def remove_list(self, list_id: str, delete_contents: bool = False) -> bool:
        """
        Tombstones a record. For a folder, `delete_contents` also tombstones its
        members; otherwise they move to the top level.
        """
        records = self.store.load_lists()
        target = next((r for r in records if r.get(KEY_ID) == list_id), None)
        if target is None:
            return False

        stamp = utc_now_iso()
        folder_removed = is_folder(target)
        result: List[Record] = []
        for record in records:
            if record.get(KEY_ID) == list_id:
                result.append({**record, KEY_DELETED: True, KEY_UPDATED_AT: stamp})
            elif folder_removed and not is_folder(record) and record.get(KEY_FOLDER) == list_id:
                if delete_contents:
                    result.append({**record, KEY_DELETED: True, KEY_UPDATED_AT: stamp})
                else:
                    result.append({**record, KEY_FOLDER: None, KEY_UPDATED_AT: stamp})
            else:
                result.append(record)

        self._persist(result)
        logger.info(f"Removed {'folder' if folder_removed else 'list'} {list_id!r}"
                    f"{' with its contents' if folder_removed and delete_contents else ''}.")
        return True

    def create_list(self, record: Record) -> Record:
        """Adds a record at the bottom of the top level unless it already carries a rank."""
        records = self.store.load_lists()
        new_record = {
            KEY_TYPE: RECORD_TYPE_LIST,
            KEY_FOLDER: None,
            **record,
        }
        new_record.setdefault(KEY_ID, uuid.uuid4().hex)
        if not new_record.get(KEY_RANK):
            new_record[KEY_RANK] = generate_rank(_last_top_level_rank(records), None)
        new_record[KEY_UPDATED_AT] = utc_now_iso()

        self._persist(records + [new_record])
        return new_record

    def create_folder(self, name: str, folder_id: Optional[str] = None) -> Record:
        """Adds an open folder at the bottom of the top level."""
        records = self.store.load_lists()
        folder = {
            KEY_ID: folder_id or f"folder-{uuid.uuid4().hex[:12]}",
            "name": name,
            KEY_TYPE: RECORD_TYPE_FOLDER,
            KEY_OPEN: True,
            KEY_FOLDER: None,
            KEY_RANK: generate_rank(_last_top_level_rank(records), None),
            KEY_UPDATED_AT: utc_now_iso(),
        }
        self._persist(records + [folder])
        return folder

    def toggle_folder(self, folder_id: str) -> Optional[Record]:
        records = self.store.load_lists()
        folder = next((r for r in records if r.get(KEY_ID) == folder_id and is_folder(r)), None)
        if folder is None:
            return None
        toggled = {**folder, KEY_OPEN: not folder.get(KEY_OPEN, True), KEY_UPDATED_AT: utc_now_iso()}
        self._persist([toggled if r.get(KEY_ID) == folder_id else r for r in records])
        return toggled

    def move(self, source_index: int, dest_index: int) -> List[Record]:
        """
        Drag-and-drop on the displayed sequence. Returns the new display sequence.

        Raises:
            IndexError: If an index is outside the displayed sequence.
        """
        display = self.get_display_lists()
        if source_index == dest_index:
            return display
        moved = reorder(display, source_index, dest_index)
        changed = {r[KEY_ID]: r for r, before in zip(moved, display) if r is not before}

        records = self.store.load_lists()
        full = [changed.get(r.get(KEY_ID), r) for r in records]
        self._persist(full)
        return sort_by_rank(filter_deleted_lists(full))

#
# End of List_Library.py
########################################################################################################################
