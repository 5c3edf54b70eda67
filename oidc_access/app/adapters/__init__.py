"""
Framework adapters translating engine outcomes into HTTP responses.
"""

from .fastapi import FastAPIAuth

__all__ = ["FastAPIAuth"]
