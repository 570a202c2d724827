"""
Client du control-plane: permet à un processus externe d'injecter une
requête dans le serveur de langage d'un proxy en cours d'exécution.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from ..core.constants import DEFAULT_CONTROL_HOST, DEFAULT_REQUEST_TIMEOUT_MS
from ..core.exceptions import ControlClientError
from .discovery import PathLike, port_file_path, read_port_file


class ControlClient:
    """
    Client HTTP du control-plane.

    Le timeout HTTP doit couvrir le timeout des requêtes du proxy: c'est le
    proxy qui répond avec l'erreur de timeout, pas le client.
    """

    def __init__(
        self,
        port: int,
        host: str = DEFAULT_CONTROL_HOST,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_MS / 1000.0 + 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.port = port
        self.host = host
        self.timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    @classmethod
    def discover(cls, workdir: PathLike, cwd: Optional[PathLike] = None, **kwargs) -> "ControlClient":
        """
        Trouve le proxy associé à `cwd` via son fichier de découverte.

        Raises:
            ControlClientError: Aucun proxy publié pour ce répertoire
        """
        path = port_file_path(workdir, cwd)
        port = read_port_file(path)
        if port is None:
            raise ControlClientError(f"Aucun proxy publié dans {path}")
        return cls(port, **kwargs)

    async def request(self, method: str, params: Any = None) -> Any:
        """
        Envoie `{method, params}` au proxy et retourne le résultat JSON.

        Raises:
            ControlClientError: Proxy injoignable ou réponse non-200
        """
        payload = {"method": method, "params": params}
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=2.0),
            transport=self._transport,
        ) as client:
            try:
                response = await client.post(self.url, json=payload)
            except httpx.HTTPError as e:
                raise ControlClientError(f"Proxy injoignable: {e}", url=self.url)

        if response.status_code != 200:
            raise ControlClientError(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
                url=self.url,
            )
        return response.json()
