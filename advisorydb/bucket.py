"""Bucket naming for language-specific advisories."""

SEPARATOR = "::"


def bucket_name(ecosystem: str, data_source: str) -> str:
    """Return the bucket name for *ecosystem* fed by *data_source*."""
    return f"{ecosystem}{SEPARATOR}{data_source}"