"""
Shared pagination contract for every list-returning endpoint.

Request (query string):
    page            1-indexed, default 1
    limit           default DEFAULT_PAGE_LIMIT (10), capped at MAX_PAGE_LIMIT
    orderBy         field name, default "createdAt"
    orderDirection  "asc" | "desc", default "desc"
    queryTerm       optional free-text filter (endpoint-specific)

Response:
    {"data": [...], "metadata": {"page": n, "totalPages": n, "limit": n}}

totalPages = ceil(total / limit), never less than 1.  A page beyond
totalPages yields an empty data list and echoes the requested page number.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from flask import current_app, request

from onboarding_desk.core.exceptions import ValidationError

DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100
DEFAULT_ORDER_BY = "createdAt"
DEFAULT_ORDER_DIRECTION = "desc"
ORDER_DIRECTIONS = ("asc", "desc")


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = DEFAULT_PAGE_LIMIT
    order_by: str = DEFAULT_ORDER_BY
    order_direction: str = DEFAULT_ORDER_DIRECTION
    query_term: str | None = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _positive_int(raw, field: str, default: int) -> int:
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={field: raw})
    if value < 1:
        raise ValidationError(f"{field} must be >= 1", details={field: value})
    return value


def parse_page_request(args=None, *, default_limit: int | None = None,
                       max_limit: int | None = None) -> PageRequest:
    """Build a PageRequest from query parameters.

    Args:
        args: Mapping of query parameters. Defaults to ``request.args``.
        default_limit / max_limit: Override the app-configured bounds.

    Raises:
        ValidationError: non-numeric or non-positive page/limit, or an
            orderDirection other than asc/desc.
    """
    if args is None:
        args = request.args
    if default_limit is None:
        default_limit = current_app.config.get("DEFAULT_PAGE_LIMIT", DEFAULT_PAGE_LIMIT)
    if max_limit is None:
        max_limit = current_app.config.get("MAX_PAGE_LIMIT", MAX_PAGE_LIMIT)

    page = _positive_int(args.get("page"), "page", 1)
    limit = min(_positive_int(args.get("limit"), "limit", default_limit), max_limit)

    order_by = (args.get("orderBy") or DEFAULT_ORDER_BY).strip()
    direction = (args.get("orderDirection") or DEFAULT_ORDER_DIRECTION).strip().lower()
    if direction not in ORDER_DIRECTIONS:
        raise ValidationError(
            f"orderDirection must be one of: {', '.join(ORDER_DIRECTIONS)}",
            details={"orderDirection": direction},
        )

    query_term = (args.get("queryTerm") or "").strip() or None
    return PageRequest(
        page=page,
        limit=limit,
        order_by=order_by,
        order_direction=direction,
        query_term=query_term,
    )


def total_pages(total: int, limit: int) -> int:
    return max(1, math.ceil(total / limit))


def paginate(query, page_request: PageRequest, sortable: dict, serialize=None,
             tiebreaker=None) -> dict:
    """Apply ordering and page slicing to a SQLAlchemy query.

    Args:
        query: Un-ordered ``Model.query`` style query.
        page_request: Parsed PageRequest.
        sortable: Map of public field name → column, e.g.
            ``{"createdAt": Onboarding.created_at}``.
        serialize: Callable turning a row into a dict (default ``row.to_dict()``).
        tiebreaker: Secondary column (usually the PK) so equal sort keys keep
            a stable order across pages.

    Returns:
        ``{"data": [...], "metadata": {"page", "totalPages", "limit"}}``

    Raises:
        ValidationError: orderBy is not one of ``sortable``.
    """
    column = sortable.get(page_request.order_by)
    if column is None:
        raise ValidationError(
            f"orderBy must be one of: {', '.join(sorted(sortable))}",
            details={"orderBy": page_request.order_by},
        )

    total = query.order_by(None).count()
    ascending = page_request.order_direction == "asc"
    ordering = [column.asc() if ascending else column.desc()]
    if tiebreaker is not None:
        ordering.append(tiebreaker.asc() if ascending else tiebreaker.desc())
    rows = query.order_by(*ordering).limit(page_request.limit).offset(page_request.offset).all()

    serialize = serialize or (lambda row: row.to_dict())
    return {
        "data": [serialize(row) for row in rows],
        "metadata": {
            "page": page_request.page,
            "totalPages": total_pages(total, page_request.limit),
            "limit": page_request.limit,
        },
    }
