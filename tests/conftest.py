"""
Fixture condivise per i test del servizio WhatsApp multi-sessione.

Forniscono:
- FakeClient: client di messaggistica finto che registra le chiamate e
  permette di emettere eventi a mano
- CredentialStore su tmp_path
- SessionRegistry con recovery_delay ridotto
"""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from whatsapp_api.client import ClientEvent, EventType
from whatsapp_api.credential_store import CredentialStore
from whatsapp_api.monitoring import SessionMonitor
from whatsapp_api.registry import SessionRegistry


class FakeClient:
    """Client finto: nessun browser, eventi pilotati dal test"""

    def __init__(self, client_id: str, data_path: Path):
        self.client_id = client_id
        self.data_path = data_path
        self.events: "asyncio.Queue[ClientEvent]" = asyncio.Queue()

        self.initialized = False
        self.destroyed = False
        self.logged_out = False
        self.sent: List[tuple] = []

        self.initial_events: List[ClientEvent] = []
        self.init_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None

    def emit(self, event_type: EventType, payload: Optional[str] = None):
        self.events.put_nowait(ClientEvent(event_type, payload))

    async def initialize(self):
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True
        for event in self.initial_events:
            self.events.put_nowait(event)

    async def send_message(self, chat_id: str, body: str):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, body))

    async def logout(self):
        if self.logout_error is not None:
            raise self.logout_error
        self.logged_out = True

    async def destroy(self):
        self.destroyed = True


class FakeClientFactory:
    """Factory che tiene traccia di tutti i client creati per sessione"""

    def __init__(self):
        self.clients: Dict[str, List[FakeClient]] = {}
        self.initial_events: Dict[str, List[ClientEvent]] = {}
        self.init_errors: Dict[str, Exception] = {}

    def __call__(self, client_id: str, data_path: Path) -> FakeClient:
        client = FakeClient(client_id, data_path)
        client.initial_events = list(self.initial_events.get(client_id, []))
        client.init_error = self.init_errors.get(client_id)
        self.clients.setdefault(client_id, []).append(client)
        return client

    def created(self, client_id: str) -> List[FakeClient]:
        return self.clients.get(client_id, [])

    def latest(self, client_id: str) -> FakeClient:
        return self.clients[client_id][-1]

    @property
    def total_created(self) -> int:
        return sum(len(c) for c in self.clients.values())


async def settle(client: FakeClient):
    """Attende che init e consumer abbiano processato gli eventi in coda"""
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    await client.events.join()


@pytest.fixture
def credential_store(tmp_path):
    return CredentialStore(tmp_path / "sessions")


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def monitor():
    return SessionMonitor()


@pytest_asyncio.fixture
async def registry(credential_store, client_factory, monitor):
    registry = SessionRegistry(
        credential_store,
        client_factory,
        recovery_delay=0.01,
        monitor=monitor,
    )
    yield registry
    await registry.close()
