#!/usr/bin/env python3
"""
# @file purpose: Monitoring stato sessioni WhatsApp

Metriche in memoria per ogni nome sessione:
- Tracking transizioni di stato (qr, connessione, disconnessione)
- Conteggio disconnessioni e recovery automatici
- Statistiche invii messaggi
Le metriche sono indicizzate per nome e sopravvivono alla sostituzione
della sessione durante il recovery.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Stati possibili di una sessione"""
    INITIALIZING = "initializing"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    AUTH_FAILED = "auth_failed"


@dataclass
class SessionMetrics:
    """Metriche di una sessione"""
    session: str
    status: SessionState
    created_at: datetime
    connected_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = None
    last_detail: Optional[str] = None
    disconnect_count: int = 0
    recovery_count: int = 0
    messages_sent: int = 0
    send_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
            "last_event_at": self.last_event_at.isoformat() if self.last_event_at else None,
            "last_detail": self.last_detail,
            "disconnect_count": self.disconnect_count,
            "recovery_count": self.recovery_count,
            "messages_sent": self.messages_sent,
            "send_failures": self.send_failures,
        }


class SessionMonitor:
    """Monitor per tracking sessioni real-time"""

    def __init__(self):
        self.session_metrics: Dict[str, SessionMetrics] = {}

    def register_session(self, session: str) -> SessionMetrics:
        """Registra (o riarma) una sessione per monitoring"""
        metrics = self.session_metrics.get(session)
        now = datetime.now(timezone.utc)

        if metrics is None:
            metrics = SessionMetrics(
                session=session,
                status=SessionState.INITIALIZING,
                created_at=now,
            )
            self.session_metrics[session] = metrics
            logger.info(f"📝 Sessione registrata per monitoring: {session}")
        else:
            metrics.status = SessionState.INITIALIZING
            metrics.last_event_at = now

        return metrics

    def record_state(
        self,
        session: str,
        status: SessionState,
        detail: Optional[str] = None
    ):
        """Aggiorna lo stato di una sessione"""

        metrics = self.session_metrics.get(session)
        if metrics is None:
            metrics = self.register_session(session)

        old_status = metrics.status
        now = datetime.now(timezone.utc)

        metrics.status = status
        metrics.last_event_at = now
        if detail:
            metrics.last_detail = detail

        if status == SessionState.CONNECTED and old_status != SessionState.CONNECTED:
            metrics.connected_at = now
        elif status in [SessionState.DISCONNECTED, SessionState.AUTH_FAILED]:
            metrics.disconnect_count += 1

        logger.info(f"📊 Sessione {session}: {old_status.value} -> {status.value}")

    def record_recovery(self, session: str):
        """Conta un recovery automatico"""
        metrics = self.session_metrics.get(session)
        if metrics is None:
            metrics = self.register_session(session)
        metrics.recovery_count += 1

    def record_send(self, session: str, success: bool, error: Optional[str] = None):
        """Conta un invio riuscito o fallito"""
        metrics = self.session_metrics.get(session)
        if metrics is None:
            return

        if success:
            metrics.messages_sent += 1
        else:
            metrics.send_failures += 1
            metrics.last_detail = error

    def forget_session(self, session: str):
        self.session_metrics.pop(session, None)

    def get_session_metrics(self, session: str) -> Optional[SessionMetrics]:
        """Ottiene le metriche di una sessione"""
        return self.session_metrics.get(session)

    def get_connected_sessions(self) -> List[SessionMetrics]:
        return [
            metrics for metrics in self.session_metrics.values()
            if metrics.status == SessionState.CONNECTED
        ]

    def get_system_stats(self) -> Dict[str, Any]:
        """Ottiene statistiche di sistema"""

        status_counts = {}
        for status in SessionState:
            status_counts[status.value] = len([
                m for m in self.session_metrics.values()
                if m.status == status
            ])

        return {
            "total_sessions": len(self.session_metrics),
            "connected_sessions": len(self.get_connected_sessions()),
            "status_counts": status_counts,
            "total_recoveries": sum(m.recovery_count for m in self.session_metrics.values()),
            "messages_sent": sum(m.messages_sent for m in self.session_metrics.values()),
            "send_failures": sum(m.send_failures for m in self.session_metrics.values()),
        }
