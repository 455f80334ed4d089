"""ElReview webhook server.

The FastAPI application lives in ``elreview.server.app``.
"""

from elreview.server.config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
