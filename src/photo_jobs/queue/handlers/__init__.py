"""Processing handler implementations."""

from photo_jobs.queue.handlers.base import HandlerResult, TaskHandler
from photo_jobs.queue.handlers.echo import EchoHandler
from photo_jobs.queue.handlers.http_vendor import HttpVendorHandler

__all__ = [
    "EchoHandler",
    "HandlerResult",
    "HttpVendorHandler",
    "TaskHandler",
]
