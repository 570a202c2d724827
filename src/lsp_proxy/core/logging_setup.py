"""
Configuration du logging.

stdout est le canal JSON-RPC vers l'éditeur: aucun log ne doit y être écrit.
Les handlers sont donc attachés à stderr (ou à un fichier).
"""
import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_configured_handler: Optional[logging.Handler] = None


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure le logger racine du package.

    Args:
        level: Niveau de log (DEBUG, INFO, WARNING, ...)
        log_file: Fichier de log optionnel (sinon stderr)

    Returns:
        Logger racine `lsp_proxy`
    """
    global _configured_handler

    logger = logging.getLogger("lsp_proxy")
    if _configured_handler is not None:
        logger.removeHandler(_configured_handler)
        _configured_handler.close()

    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(level.upper())
    # Pas de propagation: un handler racine sur stdout corromprait le flux.
    logger.propagate = False

    _configured_handler = handler
    return logger
