"""Typed tracking errors.

Services raise these; the tracking router is the only place that turns them
into HTTP responses (or swallows them for fire-and-forget endpoints).
"""
from __future__ import annotations


class TrackingError(Exception):
    status_code = 500

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class TrackingValidationError(TrackingError):
    status_code = 400


class PostNotFoundError(TrackingError):
    status_code = 404

    def __init__(self, post_id: int):
        super().__init__("Blog post not found")
        self.post_id = post_id


class TrackingPersistenceError(TrackingError):
    status_code = 500
