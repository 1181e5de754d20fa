"""Tests for the PostgREST destination client against a mocked session."""

from unittest.mock import MagicMock

import pytest
import requests

from storeshift.loaders.base import Predicate
from storeshift.loaders.postgrest import PostgrestDestination, parse_content_range, predicate_param
from storeshift.models.errors import DestinationError, ErrorKind


def make_response(status=200, json_data=None, headers=None):
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    response.json.return_value = json_data if json_data is not None else []
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status} Error", response=response
        )
    return response


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    session.request.return_value = make_response()
    return session


@pytest.fixture
def client(session):
    return PostgrestDestination("https://project.supabase.co/", "service-key", session=session)


def test_predicate_params():
    assert predicate_param(Predicate("id", "eq", "a")) == ("id", "eq.a")
    assert predicate_param(Predicate("id", "in", ["a", "b"])) == ("id", 'in.("a","b")')
    assert predicate_param(Predicate("email", "not_in", ["x@y.io"])) == ("email", 'not.in.("x@y.io")')
    assert predicate_param(Predicate.all_rows()) == ("id", "not.is.null")


def test_unknown_predicate_op():
    with pytest.raises(ValueError):
        Predicate("id", "like", "a%")


def test_parse_content_range():
    assert parse_content_range("0-24/3573") == 3573
    assert parse_content_range("*/0") == 0
    with pytest.raises(DestinationError):
        parse_content_range(None)
    with pytest.raises(DestinationError):
        parse_content_range("0-9/*")


def test_headers_and_base_url(client, session):
    assert client.base_url == "https://project.supabase.co/rest/v1"
    assert session.headers["apikey"] == "service-key"
    assert session.headers["Authorization"] == "Bearer service-key"
    assert session.headers["Accept-Profile"] == "public"


def test_url_is_required():
    with pytest.raises(DestinationError):
        PostgrestDestination("", "key", session=MagicMock())


@pytest.mark.asyncio
async def test_insert_batch_posts_array(client, session):
    rows = [{"id": "1"}, {"id": "2"}]

    inserted = await client.insert_batch("tasks", rows)

    assert inserted == 2
    method, url = session.request.call_args.args
    kwargs = session.request.call_args.kwargs
    assert (method, url) == ("POST", "https://project.supabase.co/rest/v1/tasks")
    assert kwargs["json"] == rows
    assert kwargs["headers"] == {"Prefer": "return=minimal"}


@pytest.mark.asyncio
async def test_insert_empty_batch_skips_request(client, session):
    assert await client.insert_batch("tasks", []) == 0
    session.request.assert_not_called()


@pytest.mark.asyncio
async def test_select_with_filters(client, session):
    session.request.return_value = make_response(json_data=[{"id": "1"}], headers={"Content-Range": "0-0/1"})

    rows = await client.select("users", columns=["id", "email"], filters=[Predicate("id", "in", ["1"])], limit=5)

    assert rows == [{"id": "1"}]
    assert session.request.call_args.kwargs["params"] == [
        ("select", "id,email"), ("id", 'in.("1")'), ("order", "id.asc"), ("limit", "5"), ("offset", "0"),
    ]
    assert session.request.call_args.kwargs["headers"] == {"Prefer": "count=exact"}


def page(start, size, total):
    rows = [{"id": f"{i:05d}"} for i in range(start, start + size)]
    end = start + size - 1
    return make_response(json_data=rows, headers={"Content-Range": f"{start}-{end}/{total}"})


@pytest.mark.asyncio
async def test_select_pages_until_exact_count(session):
    client = PostgrestDestination("https://project.supabase.co", "key", page_size=1000, session=session)
    session.request.side_effect = [page(0, 1000, 1500), page(1000, 500, 1500)]

    rows = await client.select("tasks")

    assert len(rows) == 1500
    assert len({r["id"] for r in rows}) == 1500
    offsets = [dict(c.kwargs["params"])["offset"] for c in session.request.call_args_list]
    assert offsets == ["0", "1000"]


@pytest.mark.asyncio
async def test_select_follows_server_row_cap(session):
    # Server caps pages at 2 rows even though 5 were asked for.
    client = PostgrestDestination("https://project.supabase.co", "key", page_size=5, session=session)
    session.request.side_effect = [page(0, 2, 5), page(2, 2, 5), page(4, 1, 5)]

    rows = await client.select("tasks")

    assert [r["id"] for r in rows] == ["00000", "00001", "00002", "00003", "00004"]
    assert session.request.call_count == 3


@pytest.mark.asyncio
async def test_select_respects_limit_across_pages(session):
    client = PostgrestDestination("https://project.supabase.co", "key", page_size=2, session=session)
    session.request.side_effect = [page(0, 2, 10), page(2, 1, 10)]

    rows = await client.select("tasks", limit=3)

    assert len(rows) == 3
    assert dict(session.request.call_args.kwargs["params"])["limit"] == "1"


@pytest.mark.asyncio
async def test_select_empty_table(client, session):
    session.request.return_value = make_response(json_data=[], headers={"Content-Range": "*/0"})
    assert await client.select("tasks") == []
    assert session.request.call_count == 1


@pytest.mark.asyncio
async def test_count_uses_exact_count_header(client, session):
    session.request.return_value = make_response(headers={"Content-Range": "*/42"})

    assert await client.count("tasks") == 42
    assert session.request.call_args.args[0] == "HEAD"
    assert session.request.call_args.kwargs["headers"] == {"Prefer": "count=exact"}


@pytest.mark.asyncio
async def test_delete_returns_deleted_count(client, session):
    session.request.return_value = make_response(headers={"Content-Range": "*/7"})

    deleted = await client.delete_where("users", Predicate("email", "not_in", ["system@storeshift.local"]))

    assert deleted == 7
    assert session.request.call_args.args[0] == "DELETE"
    assert session.request.call_args.kwargs["params"] == [("email", 'not.in.("system@storeshift.local")')]


@pytest.mark.asyncio
async def test_http_error_becomes_destination_error(client, session):
    session.request.return_value = make_response(
        status=409, json_data={"message": "duplicate key value violates unique constraint"}
    )

    with pytest.raises(DestinationError) as exc_info:
        await client.insert_batch("users", [{"id": "1"}])

    error = exc_info.value
    assert error.kind == ErrorKind.IMPORT_ERROR
    assert error.table == "users"
    assert error.context["status_code"] == 409
    assert "duplicate key" in error.message


@pytest.mark.asyncio
async def test_connection_error_becomes_destination_error(client, session):
    session.request.side_effect = requests.exceptions.ConnectionError("refused")

    with pytest.raises(DestinationError):
        await client.count("users")


def test_default_session_retries_idempotent_methods_only():
    client = PostgrestDestination("https://project.supabase.co", "key", max_retries=5)
    retries = client._session.get_adapter("https://project.supabase.co").max_retries

    assert retries.total == 5
    assert 429 in retries.status_forcelist
    assert retries.is_retry("GET", 503)
    assert retries.is_retry("DELETE", 429)
    assert not retries.is_retry("POST", 502)
