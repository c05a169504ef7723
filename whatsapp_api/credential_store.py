#!/usr/bin/env python3
"""
# @file purpose: Gestione directory credenziali per sessione

Ogni sessione WhatsApp ha una directory sotto una root fissa dove il client
persiste il materiale di autenticazione (profilo browser). Il contenuto è di
proprietà del client: qui gestiamo solo creazione, elenco, dimensioni e
rimozione.
"""

import logging
import re
import shutil
from pathlib import Path
from typing import Any, Dict, List

from whatsapp_api.errors import InvalidSessionName

logger = logging.getLogger(__name__)

# Stesse regole del clientId di LocalAuth: alfanumerici, underscore e trattino
SESSION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_session_name(name: Any) -> str:
    """Verifica che il nome sessione sia utilizzabile come chiave e directory"""
    if not isinstance(name, str) or not SESSION_NAME_PATTERN.match(name):
        raise InvalidSessionName(name)
    return name


def _dir_usage(path: Path) -> Dict[str, int]:
    total_bytes = 0
    file_count = 0
    for file_path in path.rglob("*"):
        if file_path.is_file():
            total_bytes += file_path.stat().st_size
            file_count += 1
    return {"total_bytes": total_bytes, "file_count": file_count}


class CredentialStore:
    """Root delle directory credenziali, una sottodirectory per sessione"""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"📁 CredentialStore inizializzato - base_dir: {self.base_dir}")

    def get_session_dir(self, name: str) -> Path:
        """Ottiene la directory di una sessione (senza crearla)"""
        return self.base_dir / validate_session_name(name)

    def ensure_session_dir(self, name: str) -> Path:
        """Crea la directory della sessione se non esiste"""
        session_dir = self.get_session_dir(name)
        if not session_dir.exists():
            session_dir.mkdir(exist_ok=True)
            logger.info(f"📁 Directory sessione creata: {session_dir}")
        return session_dir

    def has_session_dir(self, name: str) -> bool:
        return self.get_session_dir(name).is_dir()

    def list_persisted_sessions(self) -> List[Dict[str, Any]]:
        """Elenca le sessioni con credenziali persistite su disco"""
        sessions = []
        for session_dir in sorted(self.base_dir.iterdir()):
            if not session_dir.is_dir():
                continue
            if not SESSION_NAME_PATTERN.match(session_dir.name):
                continue
            usage = _dir_usage(session_dir)
            sessions.append({
                "session": session_dir.name,
                "path": str(session_dir),
                "total_mb": round(usage["total_bytes"] / (1024 * 1024), 2),
                "file_count": usage["file_count"],
            })
        return sessions

    def get_session_storage_usage(self, name: str) -> Dict[str, Any]:
        """Ottiene l'utilizzo storage di una sessione"""
        session_dir = self.get_session_dir(name)

        if not session_dir.exists():
            return {"session": name, "total_bytes": 0, "total_mb": 0.0, "file_count": 0}

        usage = _dir_usage(session_dir)
        return {
            "session": name,
            "total_bytes": usage["total_bytes"],
            "total_mb": round(usage["total_bytes"] / (1024 * 1024), 2),
            "file_count": usage["file_count"],
        }

    def remove_session_dir(self, name: str) -> bool:
        """Elimina le credenziali persistite di una sessione"""
        session_dir = self.get_session_dir(name)

        if not session_dir.exists():
            return False

        shutil.rmtree(session_dir)
        logger.info(f"🧹 Credenziali rimosse per sessione: {name}")
        return True

    def get_storage_stats(self) -> Dict[str, Any]:
        """Ottiene statistiche storage globali"""
        sessions = self.list_persisted_sessions()
        usage = _dir_usage(self.base_dir)

        return {
            "base_dir": str(self.base_dir),
            "persisted_sessions": len(sessions),
            "total_bytes": usage["total_bytes"],
            "total_mb": round(usage["total_bytes"] / (1024 * 1024), 2),
        }
