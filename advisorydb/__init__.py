"""Load security advisories from several sources into a nested key-value database."""

__version__ = "0.1.0"