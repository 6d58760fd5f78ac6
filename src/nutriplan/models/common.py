"""Shared response envelope and pagination models."""

from datetime import UTC, date, datetime
from enum import Enum
import math
from typing import Annotated, Any, Generic, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

T = TypeVar("T")


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(UTC)


def assume_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes from clients are taken as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(assume_utc)]


def to_document(value: Any) -> Any:
    """Convert model output into values both store backends accept.

    Enums become their values and bare dates become ISO strings; datetimes
    stay native so they remain comparable.
    """
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        return {key: to_document(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [to_document(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    return value


class PaginationInfo(BaseModel):
    """Page metadata returned alongside list results."""

    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    pages: int = Field(..., ge=0)

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationInfo":
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit))


class ApiResponse(BaseModel, Generic[T]):
    """JSON envelope used by every endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    data: T | None = None
    pagination: PaginationInfo | None = None


def ok(
    message: str,
    data: Any = None,
    pagination: PaginationInfo | None = None,
) -> dict[str, Any]:
    """Build a success envelope, omitting absent optional members."""
    body: dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination.model_dump()
    return body


def error_body(message: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message}
    body.update({key: value for key, value in extra.items() if value is not None})
    return body
