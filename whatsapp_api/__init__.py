# @file purpose: Definisce il modulo API per WhatsApp Web multi-sessione
#
# Questo modulo fornisce:
# - Server HTTP FastAPI per WhatsApp Web multi-sessione
# - Registry sessioni con recovery automatico dopo disconnessione
# - Credenziali persistenti su disco per sessione
# - Monitoring stato sessioni in tempo reale

"""
WhatsApp Web API module for multi-session messaging.

Provides HTTP REST API endpoints for:
- Pairing QR code retrieval per named session
- Connection status polling
- Outbound text message dispatch
- Session logout and cleanup
"""
