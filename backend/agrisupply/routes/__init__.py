# Overview: Shared query-string helpers for API blueprints; pagination, flags and datetimes.
"""Query-string helpers shared by the API blueprints."""

from flask import current_app, request

from ..validation import ValidationError, parse_pagination
from agrisupply.time_utils import parse_iso_datetime


def pagination_args() -> tuple[int, int]:
    return parse_pagination(
        request.args,
        default_limit=current_app.config["DEFAULT_PAGE_SIZE"],
        max_limit=current_app.config["MAX_PAGE_SIZE"],
    )


def bool_arg(name: str, default: bool | None = None) -> bool | None:
    """'true'/'false' query flags; anything else (or absent) gives default."""
    raw = (request.args.get(name) or "").strip().lower()
    if raw == "true":
        return True
    if raw == "false":
        return False
    return default


def datetime_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(
            f"{name} must be an ISO-8601 datetime",
            errors=[{"field": name, "message": f"{name} must be an ISO-8601 datetime"}],
        )


def limit_arg(default: int) -> int:
    """Row cap for report widgets, clamped to 1..MAX_PAGE_SIZE."""
    limit = request.args.get("limit", default=default, type=int)
    return min(max(limit, 1), current_app.config["MAX_PAGE_SIZE"])
