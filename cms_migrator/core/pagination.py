"""Continuation-token pagination over async listings."""

from typing import AsyncIterator, Awaitable, Callable, List, Optional, TypeVar

from cms_migrator.storage.base import Page

T = TypeVar("T")

ListPage = Callable[[Optional[str]], Awaitable[Page[T]]]
OnPage = Callable[[List[T]], Awaitable[None]]


async def iterate_pages(list_page: ListPage[T]) -> AsyncIterator[List[T]]:
    """Yield the items of every page until the continuation token runs out.

    ``list_page`` is first called with ``None`` and then with each returned
    token. Errors from ``list_page`` propagate and end the walk; retrying is
    left to the transport.

    Args:
        list_page: Coroutine function returning one page for a token

    Yields:
        Items of each page, in listing order
    """
    token: Optional[str] = None
    while True:
        page = await list_page(token)
        yield page.items
        token = page.continuation_token
        if not token:
            return


async def for_each_page(list_page: ListPage[T], on_page: OnPage[T]) -> int:
    """Feed every page of a listing to ``on_page``.

    Args:
        list_page: Coroutine function returning one page for a token
        on_page: Coroutine function processing the items of a page

    Returns:
        Number of pages processed
    """
    pages = 0
    async for items in iterate_pages(list_page):
        await on_page(items)
        pages += 1
    return pages
