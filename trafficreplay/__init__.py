"""Inspect and rewrite raw HTTP payloads and replay recorded requests over HTTP."""

__version__ = "1.3.0"

__all__ = [
    "proto",
    "protocol",
    "output_null",
    "output_http",
]