"""
Fichier de découverte du control-plane.

Chemin: `<workdir>/proxy/<proxy_id>`, où `proxy_id` est l'encodage hexadécimal
du répertoire de travail du proxy (slashs finaux retirés). Le fichier contient
le port HTTP en texte décimal.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

from ..core.constants import PORT_FILE_DIRNAME

PathLike = Union[str, os.PathLike]


def proxy_id(cwd: Optional[PathLike] = None) -> str:
    """Identifiant stable du proxy, dérivé de son répertoire de travail."""
    raw = os.fspath(cwd) if cwd is not None else os.getcwd()
    stripped = raw.rstrip("/") or raw
    return stripped.encode("utf-8").hex()


def port_file_path(workdir: PathLike, cwd: Optional[PathLike] = None) -> Path:
    return Path(workdir).expanduser() / PORT_FILE_DIRNAME / proxy_id(cwd)


def write_port_file(path: PathLike, port: int) -> Path:
    """Écrit le port (répertoires parents créés au besoin)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(int(port)), encoding="utf-8")
    return path


def read_port_file(path: PathLike) -> Optional[int]:
    """Lit le port, ou None si le fichier est absent ou illisible."""
    try:
        raw = Path(path).read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if not raw.isdigit():
        return None
    return int(raw)


def remove_port_file(path: PathLike, port: Optional[int] = None) -> bool:
    """
    Supprime le fichier de découverte.

    Avec `port`, ne supprime que si le fichier contient encore ce port
    (un autre proxy du même répertoire a pu le réécrire).
    """
    path = Path(path)
    if port is not None and read_port_file(path) != port:
        return False
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
