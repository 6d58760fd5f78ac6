"""Pagination query parameters shared by list endpoints."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Query, Request

from nutriplan.models.common import PaginationInfo


@dataclass
class PaginationParams:
    page: int
    limit: int

    def info(self, total: int) -> PaginationInfo:
        return PaginationInfo.build(self.page, self.limit, total)


def get_pagination(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
) -> PaginationParams:
    """``limit`` defaults to the configured page size and is clamped to the maximum."""
    settings = request.app.state.container.settings
    size = limit or settings.default_page_size
    return PaginationParams(page=page, limit=min(size, settings.max_page_size))


Pagination = Annotated[PaginationParams, Depends(get_pagination)]
