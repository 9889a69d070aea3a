"""Query-string builder for panel list endpoints.

The panel accepts ``include=a,b``, ``filter[field]=value``, ``sort=field`` (a
leading ``-`` sorts descending) and pagination.  Values are checked against
the allowed sets of the calling manager so typos fail before a round trip.
"""

from __future__ import annotations

from typing import Iterable
from urllib.parse import urlencode


def build_query(
    *,
    include: Iterable[str] = (),
    filter: tuple[str, str] | None = None,
    sort: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
    allowed_includes: Iterable[str] = (),
    allowed_filters: Iterable[str] = (),
    allowed_sorts: Iterable[str] = (),
) -> str:
    """Return ``"?..."`` for the given options, or ``""`` when there are none.

    Raises ``ValueError`` for any include, filter field or sort key that is
    not in its allowed set.
    """
    params: list[tuple[str, str]] = []

    include = list(include)
    if include:
        allowed = set(allowed_includes)
        bad = [i for i in include if i not in allowed]
        if bad:
            raise ValueError(f"Invalid include argument(s): {', '.join(bad)}")
        params.append(("include", ",".join(include)))

    if filter is not None:
        field, value = filter
        if field not in set(allowed_filters):
            raise ValueError(f"Invalid filter argument: {field}")
        params.append((f"filter[{field}]", str(value)))

    if sort:
        if sort.lstrip("-") not in set(allowed_sorts):
            raise ValueError(f"Invalid sort argument: {sort}")
        params.append(("sort", sort))

    if page is not None:
        if page < 1:
            raise ValueError("Page must be 1 or greater")
        params.append(("page", str(page)))

    if per_page is not None:
        if not 1 <= per_page <= 100:
            raise ValueError("per_page must be between 1 and 100")
        params.append(("per_page", str(per_page)))

    if not params:
        return ""
    return "?" + urlencode(params, safe="[],-")
