"""
SnipShare — Table Query Builder
===============================

What:  Fluent builder for one PostgREST table call.
How:   Methods accumulate filters, ordering and the write payload; execute()
       turns them into a single HTTP request through BackendClient.

Wire mapping:
    select("a,b")                 → ?select=a,b
    eq("col", v)                  → ?col=eq.v
    in_("col", [a, b])            → ?col=in.(a,b)
    order("col", desc=True)       → ?order=col.desc
    limit(n)                      → ?limit=n
    single()                      → Accept: application/vnd.pgrst.object+json
    insert(rows)                  → POST
    update(values)                → PATCH (filters required)
    delete()                      → DELETE (filters required)
    upsert(rows, on_conflict="a,b")
                                  → POST ?on_conflict=a,b
                                    Prefer: resolution=merge-duplicates
"""

import uuid
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

if TYPE_CHECKING:
    from snipshare.backend.client import BackendClient

_SINGLE_OBJECT = "application/vnd.pgrst.object+json"


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, uuid.UUID):
        return str(value)
    return str(value)


class TableQuery:
    """One pending call against `/rest/v1/<table>`."""

    def __init__(
        self,
        backend: "BackendClient",
        table: str,
        access_token: Optional[str] = None,
    ):
        self._backend = backend
        self._table = table
        self._access_token = access_token
        self._method = "GET"
        self._columns: Optional[str] = "*"
        self._returning = False
        self._filters: List[Tuple[str, str]] = []
        self._order: List[str] = []
        self._limit: Optional[int] = None
        self._single = False
        self._body: Any = None
        self._on_conflict: Optional[str] = None

    # ── Reads ─────────────────────────────────────────────────────────────

    def select(self, columns: str = "*") -> "TableQuery":
        self._columns = columns
        if self._method != "GET":
            self._returning = True
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        self._filters.append((column, f"eq.{_format_value(value)}"))
        return self

    def in_(self, column: str, values: Iterable[Any]) -> "TableQuery":
        joined = ",".join(_format_value(v) for v in values)
        self._filters.append((column, f"in.({joined})"))
        return self

    def order(self, column: str, desc: bool = False) -> "TableQuery":
        self._order.append(f"{column}.{'desc' if desc else 'asc'}")
        return self

    def limit(self, count: int) -> "TableQuery":
        self._limit = count
        return self

    def single(self) -> "TableQuery":
        self._single = True
        return self

    # ── Writes ────────────────────────────────────────────────────────────

    def insert(self, rows: Any) -> "TableQuery":
        self._method = "POST"
        self._body = rows
        return self

    def update(self, values: Dict[str, Any]) -> "TableQuery":
        self._method = "PATCH"
        self._body = values
        return self

    def delete(self) -> "TableQuery":
        self._method = "DELETE"
        return self

    def upsert(self, rows: Any, on_conflict: str) -> "TableQuery":
        self._method = "POST"
        self._body = rows
        self._on_conflict = on_conflict
        return self

    # ── Execution ─────────────────────────────────────────────────────────

    def build_params(self) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = []
        if self._method == "GET" or self._returning:
            params.append(("select", self._columns or "*"))
        params.extend(self._filters)
        if self._order:
            params.append(("order", ",".join(self._order)))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        if self._on_conflict:
            params.append(("on_conflict", self._on_conflict))
        return params

    def build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        prefer = []
        if self._method != "GET":
            prefer.append("return=representation" if self._returning else "return=minimal")
        if self._on_conflict:
            prefer.append("resolution=merge-duplicates")
        if prefer:
            headers["Prefer"] = ",".join(prefer)
        if self._single:
            headers["Accept"] = _SINGLE_OBJECT
        return headers

    async def execute(self) -> Any:
        """
        Send the call.

        Returns:
            A list of row dicts, a single row dict when single() was used,
            or None for writes without select().

        Raises:
            ValueError: update()/delete() without any filter.
            BackendError: the call failed.
        """
        if self._method in ("PATCH", "DELETE") and not self._filters:
            raise ValueError(f"Refusing to {self._method} every row of '{self._table}'")

        return await self._backend.request(
            self._method,
            f"/rest/v1/{self._table}",
            params=self.build_params(),
            json=self._body,
            headers=self.build_headers(),
            access_token=self._access_token,
        )
