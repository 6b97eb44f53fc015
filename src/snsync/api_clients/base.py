"""Common record types and errors shared by the API clients."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def raw_value(value: Any) -> Any:
    """Unwrap a `{value, display_value}` shape to its raw value."""
    if isinstance(value, dict) and "value" in value:
        return value["value"]
    return value


@dataclass
class RemoteRecord:
    """A record as returned by the table API, in raw or display-value mode."""

    sys_id: str
    sys_updated_on: Optional[str]
    values: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteRecord":
        sys_id = raw_value(data.get("sys_id"))
        if not sys_id:
            raise ValueError("Record has no sys_id")
        return cls(
            sys_id=str(sys_id),
            sys_updated_on=raw_value(data.get("sys_updated_on")) or None,
            values=data
        )

    def get(self, field_name: str) -> Any:
        """Raw value of a field regardless of display-value mode."""
        return raw_value(self.values.get(field_name))

    def first_present(self, *field_names: str) -> Optional[str]:
        """First non-empty raw value among the given fields."""
        for name in field_names:
            value = self.get(name)
            if value:
                return str(value)
        return None


class AuthenticationError(Exception):
    """Raised when no valid credential can be obtained or the API rejects it."""
    pass


class RemoteAPIError(Exception):
    """Raised when the table API answers with a non-success status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class APIConnectionError(RemoteAPIError):
    """Raised when the API cannot be reached at all."""
    pass
