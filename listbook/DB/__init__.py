from .Local_Storage_DB import LocalStorageDB, SchemaError, StorageError
from .List_Store import ListStore

__all__ = ["LocalStorageDB", "ListStore", "StorageError", "SchemaError"]
