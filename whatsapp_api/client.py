#!/usr/bin/env python3
"""
# @file purpose: Client WhatsApp Web basato su Playwright

Il client è una capability opaca, una istanza per sessione:
- initialize / send_message / logout / destroy
- stream eventi (qr, ready, authenticated, auth_failure, disconnected)
  pubblicati su una asyncio.Queue consumata dalla sessione proprietaria

Il protocollo WhatsApp non viene reimplementato: il client pilota
web.whatsapp.com in un profilo Chromium persistente.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from whatsapp_api.config import Settings

logger = logging.getLogger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com"

# Il contenitore del QR espone la stringa di pairing nell'attributo data-ref
QR_SELECTOR = "div[data-ref]"
READY_SELECTORS = [
    '[data-testid="chat-list"]',
    "#pane-side",
    "#side",
]
INVALID_NUMBER_SELECTOR = 'div[data-testid="popup-controls-ok"]'
COMPOSE_SELECTOR = 'footer div[contenteditable="true"]'
SEND_SELECTORS = [
    'span[data-icon="send"]',
    'button[aria-label="Send"]',
    '[data-testid="send"]',
]
MENU_SELECTORS = [
    'div[title="Menu"]',
    'span[data-icon="menu"]',
    'span[data-icon="more-refreshed"]',
]
LOGOUT_ITEM_SELECTOR = 'div[aria-label="Log out"]'
LOGOUT_CONFIRM_SELECTOR = 'div[role="dialog"] button:has-text("Log out")'

DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
]
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class EventType(str, Enum):
    """Eventi emessi dal client"""
    QR = "qr"
    READY = "ready"
    AUTHENTICATED = "authenticated"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"


@dataclass
class ClientEvent:
    """Evento del client con payload opzionale (codice QR, motivo)"""
    type: EventType
    payload: Optional[str] = None


class MessagingClient(Protocol):
    """Capability di messaggistica posseduta da una singola sessione"""

    events: "asyncio.Queue[ClientEvent]"

    async def initialize(self) -> None:
        ...

    async def send_message(self, chat_id: str, body: str) -> None:
        ...

    async def logout(self) -> None:
        ...

    async def destroy(self) -> None:
        ...


ClientFactory = Callable[[str, Path], MessagingClient]


class MessagingClientError(Exception):
    """Errore riportato dal client WhatsApp Web"""


class WhatsAppWebClient:
    """Client WhatsApp Web pilotato da Chromium headless"""

    def __init__(
        self,
        client_id: str,
        data_path: Path,
        headless: bool = True,
        auth_timeout: float = 60.0,
        poll_interval: float = 1.0,
        browser_args: Optional[List[str]] = None,
    ):
        self.client_id = client_id
        self.data_path = Path(data_path)
        # Stesso layout di LocalAuth: <dataPath>/session-<clientId>
        self.profile_dir = self.data_path / f"session-{client_id}"
        self.headless = headless
        self.auth_timeout = auth_timeout
        self.poll_interval = poll_interval
        self.browser_args = browser_args or list(DEFAULT_BROWSER_ARGS)

        self.events: "asyncio.Queue[ClientEvent]" = asyncio.Queue()

        self._playwright = None
        self._context = None
        self._page = None
        self._watch_task: Optional[asyncio.Task] = None
        self._destroyed = False
        # Una sola pagina per sessione: invii e logout non possono sovrapporsi
        self._page_lock = asyncio.Lock()

    def _emit(self, event_type: EventType, payload: Optional[str] = None):
        self.events.put_nowait(ClientEvent(event_type, payload))

    async def initialize(self) -> None:
        """Avvia il browser, apre WhatsApp Web e inizia a osservare la pagina"""
        logger.info(f"[{self.client_id}] 🔄 Avvio Chromium con profilo {self.profile_dir}")

        self._playwright = await async_playwright().start()
        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.profile_dir),
            headless=self.headless,
            args=self.browser_args,
            user_agent=USER_AGENT,
            viewport={"width": 1280, "height": 800},
            locale="en-US",
        )
        self._context.on("close", self._on_context_close)

        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()

        await self._page.goto(WHATSAPP_WEB_URL, wait_until="domcontentloaded", timeout=60000)
        self._watch_task = asyncio.create_task(self._watch_page())

    def _on_context_close(self, _context) -> None:
        if not self._destroyed:
            logger.warning(f"[{self.client_id}] ⚠️ Browser chiuso inaspettatamente")
            self._emit(EventType.DISCONNECTED, "BROWSER_CLOSED")

    async def _is_logged_in(self) -> bool:
        for selector in READY_SELECTORS:
            if await self._page.locator(selector).count() > 0:
                return True
        return False

    async def _read_pairing_code(self) -> Optional[str]:
        qr_elem = self._page.locator(QR_SELECTOR).first
        if await qr_elem.count() == 0:
            return None
        return await qr_elem.get_attribute("data-ref")

    async def _watch_page(self):
        """Traduce lo stato della pagina in eventi del client"""
        loop = asyncio.get_running_loop()
        started_at = loop.time()
        last_code: Optional[str] = None
        authenticated = False
        ready = False

        try:
            while not self._destroyed:
                if await self._is_logged_in():
                    if not ready:
                        if not authenticated:
                            authenticated = True
                            self._emit(EventType.AUTHENTICATED)
                        ready = True
                        self._emit(EventType.READY)
                else:
                    code = await self._read_pairing_code()
                    if code:
                        if ready:
                            # Il QR ricompare dopo la connessione: dispositivo scollegato
                            self._emit(EventType.DISCONNECTED, "LOGOUT")
                            return
                        if code != last_code:
                            last_code = code
                            self._emit(EventType.QR, code)
                    elif (
                        not ready
                        and last_code is None
                        and loop.time() - started_at > self.auth_timeout
                    ):
                        self._emit(
                            EventType.AUTH_FAILURE,
                            f"Nessun QR né chat entro {self.auth_timeout:.0f}s",
                        )
                        return

                await asyncio.sleep(self.poll_interval)

        except asyncio.CancelledError:
            raise
        except PlaywrightError as e:
            if not self._destroyed:
                logger.error(f"[{self.client_id}] ❌ Errore pagina WhatsApp Web: {e}")
                self._emit(EventType.DISCONNECTED, str(e))

    async def send_message(self, chat_id: str, body: str) -> None:
        """Invia un messaggio di testo a un chat id (<numero>@c.us)"""
        async with self._page_lock:
            await self._send_on_page(chat_id, body)

    async def _send_on_page(self, chat_id: str, body: str) -> None:
        if self._page is None or self._destroyed:
            raise MessagingClientError("Client non inizializzato")

        phone = chat_id.split("@", 1)[0]
        await self._page.goto(
            f"{WHATSAPP_WEB_URL}/send?phone={phone}&text={quote(body)}",
            wait_until="domcontentloaded",
        )
        await self._page.wait_for_selector(
            f"{COMPOSE_SELECTOR}, {INVALID_NUMBER_SELECTOR}", timeout=30000
        )

        popup = self._page.locator(INVALID_NUMBER_SELECTOR)
        if await popup.count() > 0:
            await popup.first.click()
            raise MessagingClientError(f"Numero non registrato su WhatsApp: {phone}")

        for selector in SEND_SELECTORS:
            send_btn = self._page.locator(selector)
            if await send_btn.count() > 0:
                await send_btn.first.click()
                return

        # Fallback: invio da tastiera sulla casella di testo
        compose = self._page.locator(COMPOSE_SELECTOR)
        if await compose.count() == 0:
            raise MessagingClientError("Casella di testo non trovata")
        await compose.first.press("Enter")

    async def logout(self) -> None:
        """Scollega il dispositivo e cancella il profilo persistito"""
        async with self._page_lock:
            await self._logout_on_page()

    async def _logout_on_page(self) -> None:
        if self._page is None or self._destroyed:
            raise MessagingClientError("Client non inizializzato")

        for selector in MENU_SELECTORS:
            menu = self._page.locator(selector)
            if await menu.count() > 0:
                await menu.first.click()
                break
        else:
            raise MessagingClientError("Menu WhatsApp Web non trovato")

        await self._page.click(LOGOUT_ITEM_SELECTOR, timeout=10000)
        await self._page.click(LOGOUT_CONFIRM_SELECTOR, timeout=10000)

        await self.destroy()
        shutil.rmtree(self.profile_dir, ignore_errors=True)
        logger.info(f"[{self.client_id}] 🚪 Logout completato, profilo rimosso")

    async def destroy(self) -> None:
        """Rilascia browser e Playwright senza emettere disconnected"""
        self._destroyed = True

        if self._watch_task and not self._watch_task.done():
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass

        if self._context is not None:
            await self._context.close()
            self._context = None
            self._page = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


def whatsapp_web_client_factory(settings: Settings) -> ClientFactory:
    """Factory di WhatsAppWebClient configurata da Settings"""

    def factory(client_id: str, data_path: Path) -> WhatsAppWebClient:
        return WhatsAppWebClient(
            client_id,
            data_path,
            headless=settings.headless,
            auth_timeout=settings.auth_timeout,
        )

    return factory
