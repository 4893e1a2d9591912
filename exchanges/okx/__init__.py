"""
OKX exchange adapters.
"""

from .paper import OkxClientError, OkxPaperClient  # noqa: F401
