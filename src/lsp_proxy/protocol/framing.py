"""
Découpage d'un flux d'octets en messages complets (base protocol LSP).

Le base protocol est comparable à HTTP: un bloc d'en-têtes `Nom: valeur`
terminés chacun par `\\r\\n`, puis un `\\r\\n` supplémentaire, puis le contenu.
Deux `\\r\\n` consécutifs précèdent donc toujours le contenu, et l'en-tête
`Content-Length` est obligatoire.

Le framer ne connaît rien de JSON-RPC: il émet des frames (en-têtes + corps)
octet pour octet, sans jamais en couper ou en fusionner deux.

Voir https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#headerPart
"""
from __future__ import annotations

import re
from typing import AsyncIterator, Dict, Iterator, Optional

from ..core.constants import (
    CONTENT_SEPARATOR,
    DEFAULT_CHUNK_SIZE,
    HEADER_ENCODING,
    HEADER_SEPARATOR,
    LENGTH_HEADER,
    NAME_VALUE_SEPARATOR,
)
from ..core.exceptions import FramingError

_DECIMAL = re.compile(r"[0-9]+")


def parse_headers(header_block: bytes) -> Dict[str, str]:
    """
    Parse un bloc d'en-têtes (sans le séparateur final).

    Les noms sont normalisés en minuscules. Les lignes vides sont ignorées.

    Raises:
        FramingError: Ligne sans `:`
    """
    headers: Dict[str, str] = {}
    for raw_line in header_block.split(HEADER_SEPARATOR):
        if not raw_line:
            continue
        name, sep, value = raw_line.partition(NAME_VALUE_SEPARATOR)
        if not sep:
            raise FramingError(
                f"Ligne d'en-tête invalide (pas de ':'): {raw_line[:80]!r}",
                header_block=header_block,
            )
        key = name.decode(HEADER_ENCODING, errors="replace").strip().lower()
        headers[key] = value.decode(HEADER_ENCODING, errors="replace").strip()
    return headers


def parse_content_length(header_block: bytes) -> int:
    """
    Extrait la longueur du corps depuis le bloc d'en-têtes.

    Raises:
        FramingError: En-tête absent, non numérique ou négatif
    """
    headers = parse_headers(header_block)
    raw = headers.get(LENGTH_HEADER.lower())
    if raw is None:
        raise FramingError(f"En-tête {LENGTH_HEADER} manquant", header_block=header_block)
    if not _DECIMAL.fullmatch(raw):
        raise FramingError(f"{LENGTH_HEADER} invalide: {raw!r}", header_block=header_block)
    return int(raw)


class MessageFramer:
    """
    Accumule des chunks arbitraires et en extrait des frames complètes.

    Un seul chunk peut contenir plusieurs messages, et un message peut être
    réparti sur un nombre quelconque de chunks (y compris au milieu du
    séparateur). Après une FramingError le framer est inutilisable.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._headers_length: Optional[int] = None
        self._content_length: Optional[int] = None
        self._error: Optional[FramingError] = None

    @property
    def buffered(self) -> int:
        """Nombre d'octets en attente d'une frame complète."""
        return len(self._buffer)

    @property
    def failed(self) -> bool:
        return self._error is not None

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        """
        Ajoute un chunk et produit paresseusement les frames devenues complètes.

        Le chunk est ajouté immédiatement; le buffer est tronqué avant chaque
        frame produite, un consommateur qui s'arrête en route retrouve donc
        les frames restantes au prochain appel.

        Raises:
            FramingError: En-tête de longueur absent ou invalide (pendant l'itération,
                ou immédiatement si le framer a déjà échoué)
        """
        if self._error is not None:
            raise self._error
        self._buffer += chunk
        return self._extract()

    def _extract(self) -> Iterator[bytes]:
        # Un chunk peut contenir plusieurs messages
        while True:
            if self._error is not None:
                raise self._error
            if self._headers_length is None:
                # Attend le bloc d'en-têtes complet
                headers_end = self._buffer.find(CONTENT_SEPARATOR)
                if headers_end == -1:
                    return
                try:
                    self._content_length = parse_content_length(bytes(self._buffer[:headers_end]))
                except FramingError as e:
                    self._error = e
                    raise
                self._headers_length = headers_end + len(CONTENT_SEPARATOR)

            frame_length = self._headers_length + self._content_length

            # Attend le contenu complet
            if len(self._buffer) < frame_length:
                return

            frame = bytes(self._buffer[:frame_length])
            del self._buffer[:frame_length]
            self._headers_length = None
            self._content_length = None
            yield frame


async def iter_frames(reader, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """
    Lit un StreamReader par chunks bruts et produit les frames dans l'ordre.

    S'arrête proprement à EOF. Des octets résiduels (frame tronquée) sont
    abandonnés: le pair a fermé le flux en plein message.

    Raises:
        FramingError: Propagée depuis le framer
    """
    framer = MessageFramer()
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            return
        for frame in framer.feed(chunk):
            yield frame
