"""
CDE Decision Support Platform
Blueprint registry and shared request parsing.
"""

from flask import request

from cdeboard.models.cde import CDE_DOMAINS
from cdeboard.services.metric_aggregator import MetricFilters
from cdeboard.utils.errors import E, api_error
from cdeboard.utils.helpers import parse_date, parse_int


def request_limit(default_limit=100, max_limit=500):
    """``limit`` query param, clamped to [1, max_limit]."""
    limit = parse_int(request.args.get("limit"))
    if limit is None:
        return default_limit
    return max(1, min(limit, max_limit))


def json_body():
    """Parse the JSON request body.

    Returns (data, None) or (None, error_response).  An empty body is an
    empty dict; a body that is not a JSON object is a 400.
    """
    if not request.get_data(cache=True):
        return {}, None
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


def view_filters():
    """Parse ``domain`` / ``stakeholder_group_id`` / ``start`` / ``end``.

    Returns (filters, start, end, None) or (None, None, None, error_response).
    """
    domain = request.args.get("domain") or None
    if domain is not None and domain not in CDE_DOMAINS:
        return None, None, None, api_error(
            E.VALIDATION_INVALID, f"Unknown domain: {domain}",
            details={"domain": f"must be one of {list(CDE_DOMAINS)}"},
        )

    raw_group = request.args.get("stakeholder_group_id")
    group_id = parse_int(raw_group)
    if raw_group and group_id is None:
        return None, None, None, api_error(
            E.VALIDATION_INVALID, "stakeholder_group_id must be an integer",
        )

    window = {}
    for key in ("start", "end"):
        raw = request.args.get(key)
        window[key] = parse_date(raw)
        if raw and window[key] is None:
            return None, None, None, api_error(
                E.VALIDATION_INVALID, f"{key} must be a date (YYYY-MM-DD)",
            )

    filters = MetricFilters(domain=domain, stakeholder_group_id=group_id)
    return filters, window["start"], window["end"], None
