"""
Application FastAPI du control-plane.

Un seul type de requête: `POST` (n'importe quel chemin) avec un corps JSON
`{"method": ..., "params": ...}`. La requête est émise vers le serveur de
langage via le relais et la réponse HTTP contient le résultat (ou l'erreur
de timeout) sérialisé en JSON.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _parse_payload(raw: bytes) -> Optional[Dict[str, Any]]:
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    if not isinstance(payload.get("method"), str) or not payload["method"]:
        return None
    return payload


def create_control_app(relay) -> FastAPI:
    """
    Factory de l'application control-plane.

    Args:
        relay: Objet exposant `async request(method, params)` (LspRelay)

    Returns:
        Instance configurée de FastAPI
    """
    app = FastAPI(
        title="LSP Relay Proxy control-plane",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.relay = relay

    @app.api_route("/{path:path}", methods=ALL_METHODS)
    async def control_request(request: Request, path: str = ""):
        """Injecte une requête dans le serveur de langage."""
        if request.method != "POST":
            return PlainTextResponse("Method not allowed", status_code=405)

        payload = _parse_payload(await request.body())
        if payload is None:
            return PlainTextResponse("Bad Request", status_code=400)

        method = payload["method"]
        logger.info(f"🎛️ Requête control-plane: {method}")
        result = await app.state.relay.request(method, payload.get("params"))
        return JSONResponse(content=result, status_code=200)

    return app
