"""Data models for netkit.

Exports the persisted :class:`Token` and the typed response shapes
(:class:`ResponseWithHeaders`, :class:`ResponsePage`, :class:`OffsetPage`).
"""

from .base_models import OffsetPage, ResponseWithHeaders, Token
from .pages import ResponsePage

__all__ = [
    "Token",
    "ResponseWithHeaders",
    "ResponsePage",
    "OffsetPage",
]
