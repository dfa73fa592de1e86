# listbook/__init__.py
# Offline-first list collection with rank-based ordering and background sync.
__version__ = "0.1.0"
