"""Tests for paginated history loading."""

import pytest

from matrix_export.history import load_history
from matrix_export.models import Page


def make_page(raw, size, start, cursor, last):
    messages = [raw.text(f"${start + i}") for i in range(size)]
    return Page(messages=messages, cursor=cursor, last=last)


async def test_loads_until_last_page(fake_backend, general, raw):
    fake_backend.pages[general.id] = [
        make_page(raw, 900, 0, "c1", False),
        make_page(raw, 900, 900, "c2", False),
        make_page(raw, 50, 1800, None, True),
    ]

    chunks = [chunk async for chunk in load_history(fake_backend, general, 900)]

    assert [len(chunk) for chunk in chunks] == [900, 900, 50]
    assert chunks[0][0].id == "$0"
    assert chunks[2][-1].id == "$1849"


async def test_cursor_is_threaded_through(fake_backend, general, raw):
    fake_backend.pages[general.id] = [
        make_page(raw, 2, 0, "opaque-1", False),
        make_page(raw, 2, 2, "opaque-2", False),
        make_page(raw, 1, 4, "opaque-3", True),
    ]

    async for _ in load_history(fake_backend, general, 2):
        pass

    requests = [call for call in fake_backend.calls if call[0] == "read_page"]
    assert requests == [
        ("read_page", general.id, None, 2),
        ("read_page", general.id, "opaque-1", 2),
        ("read_page", general.id, "opaque-2", 2),
    ]


async def test_empty_pages_are_skipped_without_stopping(fake_backend, general, raw):
    fake_backend.pages[general.id] = [
        make_page(raw, 3, 0, "c1", False),
        Page(messages=[], cursor="c2", last=False),
        make_page(raw, 2, 3, None, True),
    ]

    chunks = [chunk async for chunk in load_history(fake_backend, general)]

    assert [len(chunk) for chunk in chunks] == [3, 2]


async def test_empty_last_page_ends_iteration(fake_backend, general):
    fake_backend.pages[general.id] = [Page(messages=[], cursor=None, last=True)]

    chunks = [chunk async for chunk in load_history(fake_backend, general)]

    assert chunks == []


async def test_fetch_errors_propagate(fake_backend, general, raw):
    fake_backend.pages[general.id] = [
        make_page(raw, 3, 0, "c1", False),
        RuntimeError("API Error"),
    ]

    received = []
    with pytest.raises(RuntimeError, match="API Error"):
        async for chunk in load_history(fake_backend, general):
            received.append(chunk)

    assert len(received) == 1


@pytest.mark.parametrize("page_size", [0, 951])
async def test_page_size_is_bounded(fake_backend, general, page_size):
    with pytest.raises(ValueError, match="page_size"):
        async for _ in load_history(fake_backend, general, page_size):
            pass
    assert fake_backend.calls == []
