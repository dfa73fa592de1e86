from .timestamps import EPOCH, parse_timestamp, utc_now_iso

__all__ = ["EPOCH", "parse_timestamp", "utc_now_iso"]
