"""
Configuration des tests pytest.
"""
import pytest
import sys
import os

# Ajoute src au path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from lsp_proxy.config.loader import _clear_config_cache  # noqa: E402


def pytest_configure(config):
    """Déclare les marqueurs utilisés par la suite."""
    config.addinivalue_line(
        "markers", "asyncio: marque un test comme asynchrone"
    )
    config.addinivalue_line(
        "markers", "unit: test unitaire sans réseau externe"
    )
    config.addinivalue_line(
        "markers", "integration: lance le proxy complet dans un sous-processus"
    )


@pytest.fixture(autouse=True)
def clean_proxy_env(monkeypatch):
    """Isole chaque test des variables LSP_PROXY_* de l'environnement."""
    for name in list(os.environ):
        if name.startswith("LSP_PROXY_"):
            monkeypatch.delenv(name, raising=False)
    _clear_config_cache()
    yield
    _clear_config_cache()


@pytest.fixture
def frame():
    """Construit une frame LSP à partir d'un corps JSON (str)."""
    def _frame(body: str) -> bytes:
        data = body.encode("utf-8")
        return f"Content-Length: {len(data)}\r\n\r\n".encode("ascii") + data
    return _frame
