"""Utility modules for configuration, logging, errors and AWS integration."""

from .response_formatter import ResponseFormatter

__all__ = [
    'ResponseFormatter'
]
