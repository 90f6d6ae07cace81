from .validator import PLATFORM_ID_PREFIX, is_valid_id, require_valid_id

__all__ = ["PLATFORM_ID_PREFIX", "is_valid_id", "require_valid_id"]
