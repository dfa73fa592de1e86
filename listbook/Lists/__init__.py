from .List_Library import ListLibrary, has_meaningful_change, update_lists_folder

__all__ = ["ListLibrary", "has_meaningful_change", "update_lists_folder"]
