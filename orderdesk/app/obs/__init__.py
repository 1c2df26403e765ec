"""Observability helpers: error sink, query timing and JSON logs.

:mod:`.logging` is imported directly by callers because it depends on the
request id middleware.
"""

from .errors import capture_exception, init_sentry, scrub_event
from .queries import add_query_logger

__all__ = ["add_query_logger", "capture_exception", "init_sentry", "scrub_event"]
