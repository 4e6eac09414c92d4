"""Protocol for paginated listing responses."""

from typing import Any, Dict, List, Optional, Protocol


class ResponsePage(Protocol):
    """A page decoded from a listing endpoint.

    Implementations expose the page ``values`` and the offset of the next
    page (``None`` when the listing is exhausted). ``from_dict`` returns
    ``None`` when the body is not a page.
    """

    values: List[Dict[str, Any]]
    next_offset: Optional[Any]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["ResponsePage"]: ...
