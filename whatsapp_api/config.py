"""
# @file purpose: Configurazione del servizio da environment

Tutte le opzioni arrivano da variabili d'ambiente (eventualmente da un file
.env caricato con python-dotenv all'avvio del server).
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional


_OFF_VALUES = {"", "off", "none", "false", "0"}
_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_optional_int(name: str, value: Optional[str]) -> Optional[int]:
    """Intero positivo oppure None se disattivato ("off")"""
    if value is None or value.strip().lower() in _OFF_VALUES:
        return None
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} deve essere un intero oppure 'off', ricevuto {value!r}")
    if parsed <= 0:
        raise ValueError(f"{name} deve essere positivo, ricevuto {parsed}")
    return parsed


def _parse_float(name: str, value: Optional[str], default: float) -> float:
    if value is None or value.strip() == "":
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ValueError(f"{name} deve essere un numero, ricevuto {value!r}")
    if parsed < 0:
        raise ValueError(f"{name} non può essere negativo, ricevuto {parsed}")
    return parsed


@dataclass
class Settings:
    """Configurazione runtime del servizio"""
    sessions_dir: Path = Path("./sessions")
    api_key: Optional[str] = None
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    recovery_delay: float = 5.0  # secondi prima di ricreare una sessione disconnessa
    min_number_digits: Optional[int] = None  # None = nessun controllo lunghezza
    max_sessions: Optional[int] = None  # None = registry non limitato
    headless: bool = True
    auth_timeout: float = 60.0
    restore_sessions: bool = False
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Costruisce Settings leggendo l'environment"""
    if env is None:
        env = os.environ

    port_raw = env.get("PORT", "8080")
    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT deve essere un intero, ricevuto {port_raw!r}")

    api_key = (env.get("WHATSAPP_API_KEY") or "").strip() or None
    origins = [
        origin.strip()
        for origin in env.get("ALLOWED_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    return Settings(
        sessions_dir=Path(env.get("WHATSAPP_SESSIONS_DIR", "./sessions")),
        api_key=api_key,
        allowed_origins=origins or ["*"],
        recovery_delay=_parse_float(
            "WHATSAPP_RECOVERY_DELAY", env.get("WHATSAPP_RECOVERY_DELAY"), 5.0
        ),
        min_number_digits=_parse_optional_int(
            "WHATSAPP_MIN_NUMBER_DIGITS", env.get("WHATSAPP_MIN_NUMBER_DIGITS")
        ),
        max_sessions=_parse_optional_int(
            "WHATSAPP_MAX_SESSIONS", env.get("WHATSAPP_MAX_SESSIONS")
        ),
        headless=_parse_bool(env.get("WHATSAPP_HEADLESS"), True),
        auth_timeout=_parse_float(
            "WHATSAPP_AUTH_TIMEOUT", env.get("WHATSAPP_AUTH_TIMEOUT"), 60.0
        ),
        restore_sessions=_parse_bool(env.get("WHATSAPP_RESTORE_SESSIONS"), False),
        host=env.get("HOST", "0.0.0.0"),
        port=port,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )
