"""Destination store speaking the PostgREST dialect (Supabase-style hosting)."""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import DestinationStore, Predicate
from ..models.errors import DestinationError

logger = logging.getLogger(__name__)


def _quote(value: Any) -> str:
    text = str(value).replace('"', '\\"')
    return f'"{text}"'


def predicate_param(predicate: Predicate) -> Tuple[str, str]:
    """Render a predicate as a PostgREST query parameter."""
    if predicate.op == "eq":
        return predicate.column, f"eq.{predicate.value}"
    if predicate.op == "neq":
        return predicate.column, f"neq.{predicate.value}"
    if predicate.op == "in":
        return predicate.column, "in.(" + ",".join(_quote(v) for v in predicate.value) + ")"
    if predicate.op == "not_in":
        return predicate.column, "not.in.(" + ",".join(_quote(v) for v in predicate.value) + ")"
    return predicate.column, "not.is.null"


def parse_content_range(header: Optional[str]) -> int:
    """Total from a Content-Range header such as '0-24/3573' or '*/0'."""
    if not header or "/" not in header:
        raise DestinationError(f"Missing or malformed Content-Range: {header!r}")
    total = header.rsplit("/", 1)[1]
    if total == "*":
        raise DestinationError("Destination did not return an exact count")
    return int(total)


class PostgrestDestination(DestinationStore):
    """
    Hosted relational service reached over its REST interface.

    Requests go through a requests.Session with retry on throttling and
    server errors. Only idempotent methods are retried; an insert POST is
    never replayed. Each call runs in a worker thread so the event loop is
    never blocked.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        schema: str = "public",
        timeout: Optional[float] = None,
        max_retries: int = 3,
        backoff_factor: float = 1.0,
        page_size: int = 1000,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the destination client.

        Args:
            url: Project URL (the /rest/v1 suffix is added)
            api_key: Service key, sent as apikey and bearer token
            schema: Postgres schema to address
            timeout: Per-request timeout in seconds, None for no timeout
            max_retries: Retries for 429/5xx responses
            backoff_factor: Exponential backoff factor between retries
            page_size: Rows requested per GET; the server may cap it lower (max-rows)
            session: Custom requests session
        """
        if not url:
            raise DestinationError("Destination URL is required")
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.api_key = api_key
        self.schema = schema
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.page_size = page_size
        self._session = session or self._create_session()
        self._session.headers.update(self._default_headers())

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=Retry.DEFAULT_ALLOWED_METHODS,
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def _default_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept-Profile": self.schema,
            "Content-Profile": self.schema,
        }
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _url(self, table: str) -> str:
        return f"{self.base_url}/{table}"

    def _request(self, method: str, table: str, **kwargs) -> requests.Response:
        try:
            response = self._session.request(method, self._url(table), timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response
        except requests.exceptions.HTTPError as e:
            error_msg = str(e)
            try:
                error_data = e.response.json()
                error_msg = error_data.get("message") or error_data.get("hint") or str(error_data)
            except ValueError:
                pass
            raise DestinationError(
                f"{method} {table} failed: {error_msg}",
                table=table,
                status_code=e.response.status_code,
            ) from e
        except requests.exceptions.RequestException as e:
            raise DestinationError(f"{method} {table} failed: {e}", table=table) from e

    # Blocking implementations

    def _insert_sync(self, table: str, rows: List[Dict[str, Any]]) -> int:
        # One POST with a JSON array is a single INSERT statement server-side.
        self._request("POST", table, json=rows, headers={"Prefer": "return=minimal"})
        logger.debug(f"Inserted {len(rows)} rows into {table}")
        return len(rows)

    def _select_sync(
        self,
        table: str,
        columns: Optional[List[str]],
        filters: Optional[List[Predicate]],
        limit: Optional[int],
    ) -> List[Dict[str, Any]]:
        """Page through the table until the exact count (or limit) is reached."""
        base: List[Tuple[str, str]] = [("select", ",".join(columns) if columns else "*")]
        base.extend(predicate_param(p) for p in filters or [])
        base.append(("order", "id.asc"))

        rows: List[Dict[str, Any]] = []
        while limit is None or len(rows) < limit:
            wanted = self.page_size if limit is None else min(self.page_size, limit - len(rows))
            params = base + [("limit", str(wanted)), ("offset", str(len(rows)))]
            response = self._request("GET", table, params=params, headers={"Prefer": "count=exact"})
            page = response.json()
            rows.extend(page)
            total = parse_content_range(response.headers.get("Content-Range"))
            if not page or len(rows) >= total:
                break
        return rows

    def _delete_sync(self, table: str, predicate: Predicate) -> int:
        response = self._request(
            "DELETE",
            table,
            params=[predicate_param(predicate)],
            headers={"Prefer": "return=minimal,count=exact"},
        )
        return parse_content_range(response.headers.get("Content-Range"))

    def _count_sync(self, table: str, filters: Optional[List[Predicate]]) -> int:
        params: List[Tuple[str, str]] = [("select", "id")]
        params.extend(predicate_param(p) for p in filters or [])
        response = self._request("HEAD", table, params=params, headers={"Prefer": "count=exact"})
        return parse_content_range(response.headers.get("Content-Range"))

    # DestinationStore

    async def insert_batch(self, table: str, rows: Sequence[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        return await asyncio.to_thread(self._insert_sync, table, list(rows))

    async def select(
        self,
        table: str,
        columns: Optional[List[str]] = None,
        filters: Optional[List[Predicate]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._select_sync, table, columns, filters, limit)

    async def delete_where(self, table: str, predicate: Predicate) -> int:
        return await asyncio.to_thread(self._delete_sync, table, predicate)

    async def count(self, table: str, filters: Optional[List[Predicate]] = None) -> int:
        return await asyncio.to_thread(self._count_sync, table, filters)

    async def close(self) -> None:
        self._session.close()
