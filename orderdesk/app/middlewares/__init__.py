"""HTTP middlewares."""

from .cors import CORSMiddleware
from .logging import LoggingMiddleware
from .request_id import RequestIdMiddleware, request_id_ctx

__all__ = [
    "CORSMiddleware",
    "LoggingMiddleware",
    "RequestIdMiddleware",
    "request_id_ctx",
]
