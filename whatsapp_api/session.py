#!/usr/bin/env python3
"""
# @file purpose: Sessione WhatsApp e macchina a stati del ciclo di vita

Una SessionHandle possiede in esclusiva un client di messaggistica e ne
consuma gli eventi in ordine FIFO con un solo task consumer. Lo stato
(ready, codice di pairing) viene modificato solo dagli eventi del client,
mai dagli handler HTTP (eccezione: logout esplicito).
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from whatsapp_api.client import ClientEvent, EventType, MessagingClient
from whatsapp_api.credential_store import validate_session_name
from whatsapp_api.errors import (
    DispatchFailure,
    InvalidNumber,
    LogoutFailure,
    NotReadyError,
)
from whatsapp_api.monitoring import SessionMonitor, SessionState

logger = logging.getLogger(__name__)

CHAT_ID_SUFFIX = "@c.us"

STATUS_CONNECTED = "connected"
STATUS_AWAITING_SCAN = "awaiting-scan"
STATUS_CONNECTING = "connecting"

__all__ = [
    "CHAT_ID_SUFFIX",
    "SessionHandle",
    "SessionState",
    "normalize_number",
    "validate_session_name",
]


def normalize_number(raw_number: str, min_digits: Optional[int] = None) -> str:
    """Converte un numero libero in chat id WhatsApp (<cifre>@c.us)"""
    local_part = raw_number
    if raw_number.endswith(CHAT_ID_SUFFIX):
        local_part = raw_number[: -len(CHAT_ID_SUFFIX)]

    digits = re.sub(r"\D", "", local_part)
    if not digits:
        raise InvalidNumber(raw_number, "nessuna cifra")
    if min_digits is not None and len(digits) < min_digits:
        raise InvalidNumber(raw_number, f"servono almeno {min_digits} cifre")

    return f"{digits}{CHAT_ID_SUFFIX}"


class SessionHandle:
    """Stato di una sessione e proprietario del relativo client"""

    def __init__(
        self,
        name: str,
        client: MessagingClient,
        on_disconnected: Optional[Callable[["SessionHandle"], None]] = None,
        monitor: Optional[SessionMonitor] = None,
    ):
        self.name = name
        self.client = client
        self.ready = False
        self.pairing_code: Optional[str] = None
        self.state = SessionState.INITIALIZING
        self.last_reason: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.closed = False

        self._on_disconnected = on_disconnected
        self._monitor = monitor
        self._consumer: Optional[asyncio.Task] = None
        self._init_task: Optional[asyncio.Task] = None
        self._release_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<SessionHandle {self.name} state={self.state.value}>"

    # ------------------------------------------------------------------
    # Avvio e rilascio
    # ------------------------------------------------------------------

    def start(self):
        """Avvia il consumer eventi e l'inizializzazione asincrona del client"""
        if self._consumer is not None:
            return
        self._consumer = asyncio.create_task(self._consume_events())
        self._init_task = asyncio.create_task(self._initialize())

    async def _initialize(self):
        try:
            await self.client.initialize()
            logger.info(f"[{self.name}] 🔄 Client inizializzato")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] ❌ Inizializzazione fallita: {e}")
            # Passa dal consumer: stesso percorso di recovery di una disconnessione
            self.client.events.put_nowait(
                ClientEvent(EventType.DISCONNECTED, f"initialize failed: {e}")
            )

    async def release(self):
        """Rilascia il client (idempotente); gli errori vengono solo loggati"""
        if self._release_task is None:
            self.closed = True

            if self._init_task and not self._init_task.done():
                self._init_task.cancel()

            self._release_task = asyncio.create_task(self._destroy_client())

        # Il destroy prosegue anche se chi attende viene cancellato
        await asyncio.shield(self._release_task)

    async def _destroy_client(self):
        try:
            await self.client.destroy()
            logger.info(f"[{self.name}] 🧹 Client rilasciato")
        except Exception as e:
            logger.error(f"[{self.name}] ❌ Errore rilascio client: {e}")

    async def close(self):
        """Ferma il consumer e rilascia il client (eviction o shutdown)"""
        consumer = self._consumer
        if (
            consumer is not None
            and not consumer.done()
            and consumer is not asyncio.current_task()
        ):
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
        await self.release()

    # ------------------------------------------------------------------
    # Macchina a stati
    # ------------------------------------------------------------------

    async def _consume_events(self):
        """Unico consumer degli eventi del client, in ordine di emissione"""
        while True:
            event = await self.client.events.get()
            try:
                terminal = await self._apply(event)
            except Exception as e:
                logger.exception(f"[{self.name}] ❌ Errore gestione evento {event.type.value}: {e}")
                terminal = False
            finally:
                self.client.events.task_done()

            if terminal:
                return

    async def _apply(self, event: ClientEvent) -> bool:
        """Applica un evento; True se la sessione è terminata"""

        if event.type == EventType.QR:
            self.pairing_code = event.payload
            self.ready = False
            self._set_state(SessionState.AWAITING_PAIRING)
            logger.info(f"[{self.name}] 📱 QR generato")
            return False

        if event.type == EventType.READY:
            self.pairing_code = None
            self.ready = True
            self._set_state(SessionState.CONNECTED)
            logger.info(f"[{self.name}] ✅ WhatsApp pronto")
            return False

        if event.type == EventType.AUTHENTICATED:
            logger.info(f"[{self.name}] 🔐 WhatsApp autenticato")
            return False

        if event.type == EventType.AUTH_FAILURE:
            self.ready = False
            self.pairing_code = None
            self.last_reason = event.payload
            self._set_state(SessionState.AUTH_FAILED, event.payload)
            logger.error(f"[{self.name}] ❌ Autenticazione fallita: {event.payload}")
            await self._disconnect()
            return True

        if event.type == EventType.DISCONNECTED:
            self.ready = False
            self.pairing_code = None
            self.last_reason = event.payload
            self._set_state(SessionState.DISCONNECTED, event.payload)
            logger.warning(f"[{self.name}] 🔌 Disconnesso: {event.payload}")
            await self._disconnect()
            return True

        logger.warning(f"[{self.name}] ⚠️ Evento sconosciuto ignorato: {event.type}")
        return False

    async def _disconnect(self):
        await self.release()
        if self._on_disconnected is not None:
            self._on_disconnected(self)

    def _set_state(self, state: SessionState, detail: Optional[str] = None):
        self.state = state
        if self._monitor is not None:
            self._monitor.record_state(self.name, state, detail)

    # ------------------------------------------------------------------
    # Accessori in sola lettura
    # ------------------------------------------------------------------

    def is_ready(self) -> bool:
        return self.ready

    def current_pairing_code(self) -> Optional[str]:
        return self.pairing_code

    def status_text(self) -> str:
        if self.ready:
            return STATUS_CONNECTED
        if self.pairing_code:
            return STATUS_AWAITING_SCAN
        return STATUS_CONNECTING

    def snapshot(self) -> Dict[str, Any]:
        """Stato serializzabile per /status e /sessions"""
        return {
            "connected": self.ready,
            "statusText": self.status_text(),
            "qr": bool(self.pairing_code),
        }

    def describe(self) -> Dict[str, Any]:
        return {
            "session": self.name,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "last_reason": self.last_reason,
            **self.snapshot(),
        }

    # ------------------------------------------------------------------
    # Operazioni
    # ------------------------------------------------------------------

    async def send(
        self,
        raw_number: str,
        body: str,
        min_digits: Optional[int] = None
    ) -> str:
        """Invia un messaggio di testo; ritorna il chat id destinatario"""
        if not self.ready:
            raise NotReadyError(self.name)

        chat_id = normalize_number(raw_number, min_digits)

        try:
            await self.client.send_message(chat_id, body)
        except Exception as e:
            logger.error(f"[{self.name}] ❌ Errore invio messaggio a {chat_id}: {e}")
            raise DispatchFailure(self.name, e) from e

        logger.info(f"[{self.name}] 📤 Messaggio inviato a {chat_id}")
        return chat_id

    async def logout(self):
        """Logout esplicito; in caso di errore lo stato resta invariato"""
        try:
            await self.client.logout()
        except Exception as e:
            logger.error(f"[{self.name}] ❌ Errore logout: {e}")
            raise LogoutFailure(self.name, e) from e

        self.ready = False
        self.pairing_code = None
        self.last_reason = "LOGOUT"
        self._set_state(SessionState.DISCONNECTED, "LOGOUT")
        logger.info(f"[{self.name}] 🚪 Logout eseguito")
