"""Utility modules for PubSub Feed."""

from .validation import ConfigValidator, ValidationError
from .backoff import compute_backoff

__all__ = [
    'ConfigValidator',
    'ValidationError',
    'compute_backoff',
]
