#!/usr/bin/env python3
"""
# @file purpose: Server HTTP FastAPI per WhatsApp Web multi-sessione

Server HTTP REST API sopra il client WhatsApp Web.
Espone per ogni sessione con nome:
- QR di pairing come immagine PNG
- Stato connessione
- Invio messaggi di testo
- Logout e rimozione sessione
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel

from whatsapp_api.client import whatsapp_web_client_factory
from whatsapp_api.config import Settings, load_settings
from whatsapp_api.credential_store import CredentialStore, validate_session_name
from whatsapp_api.errors import (
    DispatchFailure,
    InvalidNumber,
    InvalidSessionName,
    LogoutFailure,
    NotReadyError,
    SessionLimitError,
)
from whatsapp_api.monitoring import SessionMonitor
from whatsapp_api.qr import render_qr_png
from whatsapp_api.registry import SessionRegistry

# Variabili da .env prima di leggere la configurazione
load_dotenv()

# Configurazione logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


# Modelli Pydantic per API
class SendMessageRequest(BaseModel):
    """Richiesta invio messaggio (campi validati a mano per rispondere 400)"""
    number: Optional[str] = None
    message: Optional[str] = None
    session: Optional[str] = None


class LogoutRequest(BaseModel):
    """Richiesta logout sessione"""
    session: Optional[str] = None


class SendMessageResponse(BaseModel):
    """Risposta invio messaggio"""
    status: str
    message: str


class StatusResponse(BaseModel):
    """Stato di una sessione"""
    connected: bool
    statusText: str
    qr: bool


def _error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "error": error})


def _session_limit(e: SessionLimitError) -> JSONResponse:
    return _error(429, str(e))


LANDING_PAGE = """
<h1>Multi-Session WhatsApp Web API</h1>
<ul>
  <li><b>GET /qr?session=NAME</b> - QR di pairing per una sessione</li>
  <li><b>GET /status?session=NAME</b> - Stato WhatsApp di una sessione</li>
  <li><b>POST /send-whatsapp {number, message, session}</b> - Invia un messaggio</li>
  <li><b>POST /logout {session}</b> - Scollega il dispositivo e genera un nuovo QR</li>
  <li><b>GET /sessions</b> - Elenco sessioni</li>
</ul>
"""


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[SessionRegistry] = None,
    monitor: Optional[SessionMonitor] = None,
) -> FastAPI:
    """Costruisce l'app FastAPI; registry e monitor possono essere iniettati"""
    if settings is None:
        settings = load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_registry = app.state.registry is None
        if owns_registry:
            app.state.monitor = app.state.monitor or SessionMonitor()
            store = CredentialStore(settings.sessions_dir)
            app.state.registry = SessionRegistry(
                store,
                whatsapp_web_client_factory(settings),
                recovery_delay=settings.recovery_delay,
                max_sessions=settings.max_sessions,
                monitor=app.state.monitor,
            )
            logger.info(f"✅ WhatsApp API configurato - Sessions dir: {store.base_dir}")

        if settings.restore_sessions:
            await app.state.registry.restore_persisted()

        yield

        if owns_registry:
            await app.state.registry.close()

    app = FastAPI(
        title="WhatsApp Multi-Session API",
        description="API REST per WhatsApp Web multi-sessione",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.monitor = monitor if monitor is not None else (
        registry.monitor if registry is not None else None
    )

    # Configura CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    )

    logger.info(f"✅ CORS configurato per origins: {settings.allowed_origins}")

    # Dependency per verifica API key (opzionale)
    async def verify_api_key(x_api_key: Optional[str] = Header(None)):
        """Verifica API key se configurata"""
        if settings.api_key is None:
            return True
        if x_api_key is None:
            raise HTTPException(status_code=401, detail="API Key header mancante")
        if x_api_key != settings.api_key:
            raise HTTPException(status_code=403, detail="API Key non valida")
        return True

    async def get_registry(request: Request) -> SessionRegistry:
        registry = request.app.state.registry
        if registry is None:
            raise HTTPException(status_code=503, detail="Servizio non inizializzato")
        return registry

    @app.get("/", response_class=HTMLResponse)
    async def landing():
        """Pagina di benvenuto"""
        return LANDING_PAGE

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        registry = request.app.state.registry
        monitor = request.app.state.monitor
        handles = registry.handles() if registry is not None else []

        return {
            "status": "ok",
            "message": "WhatsApp API server attivo",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "active_sessions": len(handles),
            "connected_sessions": len([h for h in handles if h.is_ready()]),
            "sessions": monitor.get_system_stats() if monitor is not None else {},
            "storage": (
                registry.credential_store.get_storage_stats()
                if registry is not None else {}
            ),
        }

    @app.get("/qr")
    async def get_qr(
        session: Optional[str] = Query(None),
        registry: SessionRegistry = Depends(get_registry),
        authorized: bool = Depends(verify_api_key),
    ):
        """Restituisce il QR di pairing come PNG"""
        if not session:
            return PlainTextResponse("Nome sessione obbligatorio", status_code=400)

        try:
            handle = await registry.get_or_create(session)
        except InvalidSessionName as e:
            return PlainTextResponse(str(e), status_code=400)
        except SessionLimitError as e:
            return PlainTextResponse(str(e), status_code=429)

        code = handle.current_pairing_code()
        if not code:
            return PlainTextResponse("Nessun QR disponibile", status_code=404)

        try:
            png = render_qr_png(code)
        except Exception as e:
            logger.error(f"[{session}] ❌ Errore generazione QR: {e}")
            return PlainTextResponse("Generazione QR fallita", status_code=500)

        return Response(content=png, media_type="image/png")

    @app.get("/status", response_model=StatusResponse)
    async def get_status(
        session: Optional[str] = Query(None),
        registry: SessionRegistry = Depends(get_registry),
        authorized: bool = Depends(verify_api_key),
    ):
        """Ottiene lo stato di una sessione"""
        if not session:
            return JSONResponse(status_code=400, content={"error": "Nome sessione obbligatorio"})

        try:
            handle = await registry.get_or_create(session)
        except InvalidSessionName as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except SessionLimitError as e:
            return _session_limit(e)

        return StatusResponse(**handle.snapshot())

    @app.post("/send-whatsapp", response_model=SendMessageResponse)
    async def send_whatsapp(
        request: SendMessageRequest,
        registry: SessionRegistry = Depends(get_registry),
        authorized: bool = Depends(verify_api_key),
    ):
        """Invia un messaggio WhatsApp da una sessione"""
        if not request.session:
            return _error(400, "Nome sessione obbligatorio")
        if not request.number or not request.message:
            return _error(400, "Numero o messaggio mancante")

        try:
            handle = await registry.get_or_create(request.session)
        except InvalidSessionName as e:
            return _error(400, str(e))
        except SessionLimitError as e:
            return _session_limit(e)

        monitor = registry.monitor
        try:
            await handle.send(
                request.number,
                request.message,
                min_digits=settings.min_number_digits,
            )
        except NotReadyError as e:
            return _error(503, str(e))
        except InvalidNumber as e:
            return _error(400, str(e))
        except DispatchFailure as e:
            if monitor is not None:
                monitor.record_send(handle.name, False, str(e.cause))
            return _error(500, "Invio messaggio fallito")

        if monitor is not None:
            monitor.record_send(handle.name, True)
        return SendMessageResponse(status="success", message="Messaggio inviato")

    @app.post("/logout")
    async def logout(
        request: LogoutRequest,
        registry: SessionRegistry = Depends(get_registry),
        authorized: bool = Depends(verify_api_key),
    ):
        """Logout della sessione e nuova sessione pronta per il QR"""
        if not request.session:
            return _error(400, "Nome sessione obbligatorio")

        try:
            validate_session_name(request.session)
        except InvalidSessionName as e:
            return _error(400, str(e))

        handle = registry.get(request.session)
        if handle is None:
            return _error(404, f"Sessione {request.session} non trovata")

        try:
            await handle.logout()
        except LogoutFailure:
            return _error(500, "Logout fallito")

        try:
            await registry.restart(request.session)
        except SessionLimitError as e:
            return _session_limit(e)

        return {"status": "success", "message": f"Logout eseguito per {request.session}"}

    @app.get("/sessions")
    async def list_sessions(
        registry: SessionRegistry = Depends(get_registry),
        authorized: bool = Depends(verify_api_key),
    ):
        """Elenca sessioni attive e credenziali persistite"""
        return {
            "total_sessions": len(registry),
            "sessions": [handle.describe() for handle in registry.handles()],
            "persisted": registry.credential_store.list_persisted_sessions(),
        }

    @app.get("/session/{name}")
    async def get_session_detail(
        name: str,
        registry: SessionRegistry = Depends(get_registry),
        authorized: bool = Depends(verify_api_key),
    ):
        """Dettaglio di una sessione: stato, metriche e storage credenziali"""
        try:
            validate_session_name(name)
        except InvalidSessionName as e:
            return _error(400, str(e))

        handle = registry.get(name)
        store = registry.credential_store
        if handle is None and not store.has_session_dir(name):
            raise HTTPException(status_code=404, detail="Sessione non trovata")

        metrics = registry.monitor.get_session_metrics(name) if registry.monitor else None
        return {
            "session": name,
            "active": handle is not None,
            "state": handle.describe() if handle is not None else None,
            "metrics": metrics.to_dict() if metrics is not None else None,
            "storage": store.get_session_storage_usage(name),
        }

    @app.delete("/session/{name}")
    async def delete_session(
        name: str,
        purge: bool = False,
        registry: SessionRegistry = Depends(get_registry),
        authorized: bool = Depends(verify_api_key),
    ):
        """Rimuove una sessione senza recovery, opzionalmente cancellando le credenziali"""
        try:
            removed = await registry.remove(name, purge=purge)
        except InvalidSessionName as e:
            return _error(400, str(e))

        if not removed:
            raise HTTPException(status_code=404, detail="Sessione non trovata")

        return {"success": True, "message": f"Sessione {name} rimossa"}

    return app


app = create_app()


# Funzione per avvio server
def run_server(
    host: Optional[str] = None,
    port: Optional[int] = None,
    reload: bool = False
):
    """Avvia il server FastAPI"""
    settings = load_settings()
    host = host or settings.host
    port = port or settings.port

    logger.info(f"🚀 Avvio WhatsApp API server su {host}:{port}")

    uvicorn.run(
        "whatsapp_api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="WhatsApp Multi-Session API Server")
    parser.add_argument("--host", default=None, help="Host address")
    parser.add_argument("--port", type=int, default=None, help="Port number")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    run_server(host=args.host, port=args.port, reload=args.reload)
