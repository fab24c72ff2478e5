from typing import Optional

MAX_PARAM_LENGTH = 512


class Validator:
    """
    Input validation for path and query parameters.
    """

    @staticmethod
    def sanitize_string(s: Optional[str], max_len: int = MAX_PARAM_LENGTH) -> Optional[str]:
        """
        Strip and truncate a query value. Empty values become None.
        """
        if s is None:
            return None

        s = str(s).strip()
        if not s:
            return None
        if len(s) > max_len:
            return s[:max_len]
        return s

    @staticmethod
    def parse_product_id(raw: Optional[str]) -> Optional[int]:
        """
        Parse a product id from a path segment. Returns None if it is not a
        positive integer, so callers render a 404 instead of a 422.
        """
        if not raw:
            return None
        try:
            value = int(raw.strip())
        except (ValueError, TypeError):
            return None
        return value if value > 0 else None
