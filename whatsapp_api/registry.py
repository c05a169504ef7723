#!/usr/bin/env python3
"""
# @file purpose: Registry delle sessioni WhatsApp multi-utente

Unica fonte di verità su quali sessioni esistono:
- Creazione lazy e idempotente (insert-if-absent sotto lock)
- Recovery automatico dopo disconnessione con delay fisso
- Restart esplicito dopo logout, rimozione e shutdown ordinato
"""

import asyncio
import logging
from typing import Dict, List, Optional

from whatsapp_api.client import ClientFactory
from whatsapp_api.credential_store import CredentialStore, validate_session_name
from whatsapp_api.errors import SessionLimitError
from whatsapp_api.monitoring import SessionMonitor
from whatsapp_api.session import SessionHandle

logger = logging.getLogger(__name__)

DEFAULT_RECOVERY_DELAY = 5.0


class SessionRegistry:
    """Gestisce le sessioni WhatsApp persistenti, una per nome"""

    def __init__(
        self,
        credential_store: CredentialStore,
        client_factory: ClientFactory,
        recovery_delay: float = DEFAULT_RECOVERY_DELAY,
        max_sessions: Optional[int] = None,
        monitor: Optional[SessionMonitor] = None,
    ):
        self.credential_store = credential_store
        self.recovery_delay = recovery_delay
        self.max_sessions = max_sessions
        self.monitor = monitor

        self._client_factory = client_factory
        self._sessions: Dict[str, SessionHandle] = {}
        self._recovery_tasks: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, name: str) -> bool:
        return name in self._sessions

    def get(self, name: str) -> Optional[SessionHandle]:
        return self._sessions.get(name)

    def names(self) -> List[str]:
        return sorted(self._sessions)

    def handles(self) -> List[SessionHandle]:
        return [self._sessions[name] for name in self.names()]

    def recovery_task(self, name: str) -> Optional[asyncio.Task]:
        """Recovery pendente per una sessione, se presente"""
        return self._recovery_tasks.get(name)

    async def get_or_create(self, name: str) -> SessionHandle:
        """Ottiene o crea la sessione; l'inizializzazione prosegue in background"""
        validate_session_name(name)

        async with self._lock:
            handle = self._sessions.get(name)
            if handle is not None:
                return handle
            return self._create_locked(name)

    def _create_locked(self, name: str) -> SessionHandle:
        if self._closed:
            raise RuntimeError("SessionRegistry chiuso")

        if self.max_sessions is not None and len(self._sessions) >= self.max_sessions:
            logger.warning(f"⚠️ Limite sessioni raggiunto, rifiutata: {name}")
            raise SessionLimitError(self.max_sessions)

        logger.info(f"🔄 Creando nuova sessione WhatsApp: {name}")

        session_dir = self.credential_store.ensure_session_dir(name)
        client = self._client_factory(name, session_dir)
        handle = SessionHandle(
            name,
            client,
            on_disconnected=self._schedule_recovery,
            monitor=self.monitor,
        )

        self._sessions[name] = handle
        if self.monitor is not None:
            self.monitor.register_session(name)
        handle.start()

        logger.info(f"✅ Sessione creata: {name}")
        return handle

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def _schedule_recovery(self, stale: SessionHandle):
        """Programma un restart one-shot dopo recovery_delay"""
        if self._closed:
            return

        name = stale.name
        logger.info(f"⏳ Recovery di {name} tra {self.recovery_delay:.1f}s")

        task = asyncio.create_task(self._recover(stale))
        self._recovery_tasks[name] = task

        def _forget(done: asyncio.Task):
            if self._recovery_tasks.get(name) is done:
                del self._recovery_tasks[name]

        task.add_done_callback(_forget)

    async def _recover(self, stale: SessionHandle) -> Optional[SessionHandle]:
        await asyncio.sleep(self.recovery_delay)

        async with self._lock:
            if self._closed:
                return None

            # Sostituisce solo se la voce è ancora quella disconnessa
            if self._sessions.get(stale.name) is not stale:
                logger.info(f"↪️ Recovery di {stale.name} saltato: sessione già sostituita o rimossa")
                return None

            del self._sessions[stale.name]
            await stale.release()

            if self.monitor is not None:
                self.monitor.record_recovery(stale.name)

            logger.info(f"🔁 Recovery sessione: {stale.name}")
            try:
                return self._create_locked(stale.name)
            except Exception as e:
                logger.error(f"❌ Recovery di {stale.name} fallito, sessione non ricreata: {e}")
                return None

    # ------------------------------------------------------------------
    # Operazioni esplicite
    # ------------------------------------------------------------------

    async def restart(self, name: str) -> SessionHandle:
        """Sostituisce la sessione con una nuova (es. dopo logout)"""
        validate_session_name(name)

        async with self._lock:
            stale = self._sessions.pop(name, None)
            if stale is not None:
                await stale.close()
            return self._create_locked(name)

    async def remove(self, name: str, purge: bool = False) -> bool:
        """Rimuove una sessione senza ricrearla"""
        validate_session_name(name)

        async with self._lock:
            handle = self._sessions.pop(name, None)
            pending = self._recovery_tasks.pop(name, None)
            if pending is not None:
                pending.cancel()
            if handle is not None:
                await handle.close()

            removed_dir = False
            if purge:
                removed_dir = self.credential_store.remove_session_dir(name)
                if self.monitor is not None:
                    self.monitor.forget_session(name)

        if handle is not None:
            logger.info(f"🧹 Sessione rimossa: {name}")
        return handle is not None or removed_dir

    async def restore_persisted(self) -> List[SessionHandle]:
        """Avvia una sessione per ogni directory credenziali presente su disco"""
        restored = []
        for entry in self.credential_store.list_persisted_sessions():
            try:
                restored.append(await self.get_or_create(entry["session"]))
            except SessionLimitError:
                logger.warning("⚠️ Restore interrotto: limite sessioni raggiunto")
                break
        logger.info(f"♻️ Sessioni ripristinate da disco: {len(restored)}")
        return restored

    async def close(self):
        """Shutdown: annulla i recovery e rilascia tutte le sessioni"""
        async with self._lock:
            self._closed = True

            for task in list(self._recovery_tasks.values()):
                task.cancel()
            self._recovery_tasks.clear()

            handles = list(self._sessions.values())
            self._sessions.clear()

        for handle in handles:
            await handle.close()

        logger.info(f"🛑 SessionRegistry chiuso - sessioni rilasciate: {len(handles)}")
