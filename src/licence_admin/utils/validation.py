"""Query input validation utilities."""

# Maximum lengths for common fields
MAX_SEARCH_LENGTH = 200
MAX_STATUS_LENGTH = 50


def sanitize_search(search: str | None, max_length: int = MAX_SEARCH_LENGTH) -> str | None:
    """Sanitize search input.

    Args:
        search: Raw search string
        max_length: Maximum allowed length

    Returns:
        Sanitized search string or None
    """
    if search is None:
        return None

    search = search[:max_length]

    # SQLAlchemy parameterizes these anyway
    search = search.replace(";", "").replace("--", "")

    return search.strip() or None


def validate_sort_by(sort_by: str, allowed_columns: set[str], default: str) -> str:
    """Validate sort column against whitelist.

    Args:
        sort_by: Raw sort column name
        allowed_columns: Set of allowed column names
        default: Default column if invalid

    Returns:
        Validated sort column name
    """
    if sort_by and sort_by in allowed_columns:
        return sort_by
    return default


def sanitize_status_list(
    statuses: list[str] | str | None, allowed_values: set[str]
) -> list[str] | None:
    """Normalize a status filter given as a list or comma-separated string.

    Unknown values are dropped; an empty result means no filter.

    Args:
        statuses: Raw status value(s)
        allowed_values: Set of allowed status values

    Returns:
        List of valid statuses or None
    """
    if statuses is None:
        return None

    if isinstance(statuses, str):
        statuses = statuses.split(",")

    cleaned = []
    for status in statuses:
        status = status[:MAX_STATUS_LENGTH].strip().lower()
        if status in allowed_values and status not in cleaned:
            cleaned.append(status)

    return cleaned or None


def escape_like_wildcards(value: str) -> str:
    """Escape SQL LIKE wildcards so they match literally.

    Args:
        value: Raw string value to escape

    Returns:
        Escaped string safe for use in LIKE patterns

    Example:
        >>> escape_like_wildcards("test%value")
        'test\\%value'
    """
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
