"""Shared Pydantic models for netkit.

The models cover the persisted authentication token and the typed
result shapes returned by :class:`netkit.client.NetworkProvider`.
"""

from typing import Any, ClassVar, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class Token(BaseModel):
    """Authentication token pair persisted by the credential store.

    :param auth: Access token attached to outgoing requests
    :type auth: str
    :param refresh: Optional refresh token exchanged for a new pair
    :type refresh: Optional[str]
    """

    model_config = ConfigDict(frozen=True)

    auth: str
    refresh: Optional[str] = None

    def to_bytes(self) -> bytes:
        """Encode the token for the credential store (JSON)."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Token":
        """Decode a token previously produced by :meth:`to_bytes`.

        :raises pydantic.ValidationError: If the bytes are not a valid token
        """
        return cls.model_validate_json(data)


class ResponseWithHeaders(BaseModel, Generic[T]):
    """A decoded response body paired with the response headers.

    :param headers: Response headers
    :type headers: Dict[str, str]
    :param response: Decoded body
    :type response: T
    """

    headers: Dict[str, str] = Field(default_factory=dict)
    response: T


class OffsetPage(BaseModel):
    """Page of values from an offset-paginated listing endpoint.

    Subclasses can point ``values_key``/``next_offset_key`` at different
    body keys. :meth:`from_dict` returns ``None`` for bodies that do not
    look like a page, which the provider reports as a decode error.
    """

    values_key: ClassVar[str] = "values"
    next_offset_key: ClassVar[str] = "next_offset"

    values: List[Dict[str, Any]] = Field(default_factory=list)
    next_offset: Optional[Any] = None

    @property
    def has_more(self) -> bool:
        return self.next_offset is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["OffsetPage"]:
        values = data.get(cls.values_key)
        if not isinstance(values, list):
            return None
        if not all(isinstance(item, dict) for item in values):
            return None
        return cls(values=values, next_offset=data.get(cls.next_offset_key))
