# Contains identifier helpers shared by the normalizer and the SQL writer
import re

from ..config import get_settings

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def make_sql_safe(name, max_length=None):
    """
    Make a name SQL-safe following PostgreSQL identifier rules.

    The same source key always produces the same identifier, so tables and
    columns line up across rows and across pipeline stages.

    Args:
        name: Original name (JSON key, file name, ...)
        max_length: Maximum identifier length (default: settings, 63)

    Returns:
        str: Lowercase identifier of [a-z0-9_] not starting with a digit
    """
    if max_length is None:
        max_length = get_settings().max_identifier_length

    if name is None or name == "":
        return "_empty"

    safe_name = _UNSAFE_CHARS.sub("_", str(name))

    # Prefix with underscore if starts with digit
    if safe_name[0].isdigit():
        safe_name = f"_{safe_name}"

    return safe_name.lower()[:max_length]


def normalize_for_matching(name):
    """Lowercase alphanumerics only; used for fuzzy name comparison."""
    return re.sub(r"[^a-z0-9]", "", str(name).lower())


def table_name_from_file(file_name):
    """
    Get a table name from a file name.

    Args:
        file_name: e.g. ``"Customer Orders.json"``

    Returns:
        str: e.g. ``"customer_orders"``
    """
    base = re.sub(r"\.json$", "", file_name, flags=re.IGNORECASE)
    return make_sql_safe(base)
