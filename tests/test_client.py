"""
Test del client WhatsApp Web con una pagina Playwright finta.

Nessun browser viene avviato: si verifica la traduzione dello stato della
pagina in eventi e il flusso di invio.
"""

import asyncio
from typing import List, Optional

import pytest
from playwright.async_api import Error as PlaywrightError

from whatsapp_api.client import (
    COMPOSE_SELECTOR,
    INVALID_NUMBER_SELECTOR,
    QR_SELECTOR,
    READY_SELECTORS,
    SEND_SELECTORS,
    EventType,
    MessagingClientError,
    WhatsAppWebClient,
    whatsapp_web_client_factory,
)
from whatsapp_api.config import Settings


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    async def count(self) -> int:
        if self.page.error is not None:
            raise self.page.error
        if self.selector in READY_SELECTORS:
            return 1 if self.page.logged_in else 0
        if self.selector == QR_SELECTOR:
            return 1 if self.page.qr else 0
        if self.selector == INVALID_NUMBER_SELECTOR:
            return 1 if self.page.invalid_number else 0
        if self.selector in SEND_SELECTORS:
            return 1 if self.page.send_button else 0
        if self.selector == COMPOSE_SELECTOR:
            return 1 if self.page.compose_box else 0
        return 0

    async def get_attribute(self, name: str) -> Optional[str]:
        assert name == "data-ref"
        return self.page.qr

    async def click(self):
        self.page.clicked.append(self.selector)
        self.page.clicked_on.append(self.page.url)

    async def press(self, key: str):
        self.page.pressed.append((self.selector, key))


class FakePage:
    def __init__(self):
        self.logged_in = False
        self.qr: Optional[str] = None
        self.error: Optional[Exception] = None
        self.invalid_number = False
        self.send_button = True
        self.compose_box = True
        self.url: Optional[str] = None
        self.visited: List[str] = []
        self.clicked: List[str] = []
        self.clicked_on: List[Optional[str]] = []
        self.pressed: List[tuple] = []

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def goto(self, url: str, **kwargs):
        self.url = url
        self.visited.append(url)
        await asyncio.sleep(0)

    async def wait_for_selector(self, selector: str, **kwargs):
        await asyncio.sleep(0)


async def next_event(client: WhatsAppWebClient):
    return await asyncio.wait_for(client.events.get(), timeout=1.0)


def make_client(tmp_path, **kwargs) -> WhatsAppWebClient:
    kwargs.setdefault("poll_interval", 0.001)
    client = WhatsAppWebClient("alice", tmp_path, **kwargs)
    client._page = FakePage()
    return client


def test_profile_dir_layout(tmp_path):
    client = WhatsAppWebClient("alice", tmp_path)
    assert client.profile_dir == tmp_path / "session-alice"


@pytest.mark.asyncio
async def test_watcher_emits_qr_ready_and_logout(tmp_path):
    client = make_client(tmp_path, auth_timeout=5)
    page = client._page
    watcher = asyncio.create_task(client._watch_page())

    page.qr = "ref-1"
    event = await next_event(client)
    assert (event.type, event.payload) == (EventType.QR, "ref-1")

    page.qr = "ref-2"
    event = await next_event(client)
    assert (event.type, event.payload) == (EventType.QR, "ref-2")

    page.qr = None
    page.logged_in = True
    assert (await next_event(client)).type == EventType.AUTHENTICATED
    assert (await next_event(client)).type == EventType.READY

    page.logged_in = False
    page.qr = "ref-3"
    event = await next_event(client)
    assert (event.type, event.payload) == (EventType.DISCONNECTED, "LOGOUT")

    await asyncio.wait_for(watcher, timeout=1.0)


@pytest.mark.asyncio
async def test_watcher_auth_timeout(tmp_path):
    client = make_client(tmp_path, auth_timeout=0.01)
    watcher = asyncio.create_task(client._watch_page())

    event = await next_event(client)
    assert event.type == EventType.AUTH_FAILURE
    await asyncio.wait_for(watcher, timeout=1.0)


@pytest.mark.asyncio
async def test_watcher_page_error_disconnects(tmp_path):
    client = make_client(tmp_path)
    client._page.error = PlaywrightError("Target page, context or browser has been closed")
    watcher = asyncio.create_task(client._watch_page())

    event = await next_event(client)
    assert event.type == EventType.DISCONNECTED
    assert "closed" in event.payload
    await asyncio.wait_for(watcher, timeout=1.0)


@pytest.mark.asyncio
async def test_context_close_emits_only_when_unexpected(tmp_path):
    client = make_client(tmp_path)
    client._on_context_close(None)
    assert (await next_event(client)).type == EventType.DISCONNECTED

    await client.destroy()
    client._on_context_close(None)
    assert client.events.empty()


@pytest.mark.asyncio
async def test_send_message_clicks_send(tmp_path):
    client = make_client(tmp_path)
    page = client._page

    await client.send_message("919876543210@c.us", "ciao mondo")

    assert page.visited == [
        "https://web.whatsapp.com/send?phone=919876543210&text=ciao%20mondo"
    ]
    assert page.clicked == [SEND_SELECTORS[0]]


@pytest.mark.asyncio
async def test_concurrent_sends_do_not_interleave(tmp_path):
    client = make_client(tmp_path)
    page = client._page

    await asyncio.gather(
        client.send_message("111@c.us", "A"),
        client.send_message("222@c.us", "B"),
    )

    assert sorted(page.clicked_on) == [
        "https://web.whatsapp.com/send?phone=111&text=A",
        "https://web.whatsapp.com/send?phone=222&text=B",
    ]


@pytest.mark.asyncio
async def test_send_message_falls_back_to_enter(tmp_path):
    client = make_client(tmp_path)
    client._page.send_button = False

    await client.send_message("919876543210@c.us", "ciao")

    assert client._page.pressed == [(COMPOSE_SELECTOR, "Enter")]


@pytest.mark.asyncio
async def test_send_message_without_compose_box(tmp_path):
    client = make_client(tmp_path)
    client._page.send_button = False
    client._page.compose_box = False

    with pytest.raises(MessagingClientError):
        await client.send_message("919876543210@c.us", "ciao")


@pytest.mark.asyncio
async def test_send_message_invalid_number(tmp_path):
    client = make_client(tmp_path)
    client._page.invalid_number = True

    with pytest.raises(MessagingClientError):
        await client.send_message("123@c.us", "ciao")
    assert client._page.clicked == [INVALID_NUMBER_SELECTOR]


@pytest.mark.asyncio
async def test_operations_require_initialize(tmp_path):
    client = WhatsAppWebClient("alice", tmp_path)
    with pytest.raises(MessagingClientError):
        await client.send_message("1@c.us", "x")
    with pytest.raises(MessagingClientError):
        await client.logout()
    await client.destroy()


def test_factory_uses_settings(tmp_path):
    factory = whatsapp_web_client_factory(Settings(headless=False, auth_timeout=12))
    client = factory("bob", tmp_path)

    assert isinstance(client, WhatsAppWebClient)
    assert client.client_id == "bob"
    assert client.headless is False
    assert client.auth_timeout == 12
