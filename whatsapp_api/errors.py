"""
# @file purpose: Tassonomia errori del servizio WhatsApp multi-sessione

Gli errori del client di messaggistica vengono catturati al confine della
sessione e convertiti in queste eccezioni; il layer HTTP le traduce in
status code (400, 429, 500, 503).
"""

from typing import Optional


class WhatsAppAPIError(Exception):
    """Errore base del servizio"""


class RequestValidationError(WhatsAppAPIError):
    """Campi richiesta mancanti o malformati (4xx, correggibile dal chiamante)"""


class InvalidSessionName(RequestValidationError):
    """Nome sessione vuoto o con caratteri non ammessi"""

    def __init__(self, name: Optional[str]):
        super().__init__(
            f"Nome sessione non valido: {name!r} "
            "(ammessi solo lettere, cifre, '_' e '-')"
        )
        self.name = name


class InvalidNumber(RequestValidationError):
    """Numero destinatario non valido dopo la normalizzazione"""

    def __init__(self, raw_number: str, reason: str):
        super().__init__(f"Numero non valido {raw_number!r}: {reason}")
        self.raw_number = raw_number
        self.reason = reason


class NotReadyError(WhatsAppAPIError):
    """La sessione esiste ma il client non è ancora connesso (503)"""

    def __init__(self, session_name: str):
        super().__init__(f"Client WhatsApp non pronto per la sessione {session_name}")
        self.session_name = session_name


class DispatchFailure(WhatsAppAPIError):
    """Invio messaggio fallito lato client (500)"""

    def __init__(self, session_name: str, cause: BaseException):
        super().__init__(f"Invio fallito per la sessione {session_name}: {cause}")
        self.session_name = session_name
        self.cause = cause


class LogoutFailure(WhatsAppAPIError):
    """Logout fallito lato client (500), lo stato della sessione resta invariato"""

    def __init__(self, session_name: str, cause: BaseException):
        super().__init__(f"Logout fallito per la sessione {session_name}: {cause}")
        self.session_name = session_name
        self.cause = cause


class SessionLimitError(WhatsAppAPIError):
    """Raggiunto il numero massimo di sessioni configurato (429)"""

    def __init__(self, max_sessions: int):
        super().__init__(f"Limite sessioni raggiunto ({max_sessions})")
        self.max_sessions = max_sessions
