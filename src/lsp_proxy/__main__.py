"""
Point d'entrée pour `python -m lsp_proxy` et la commande `lsp-proxy`.

stdout est le canal du protocole: tout message humain va sur stderr.
"""
import argparse
import asyncio
import logging
import sys

from . import __version__
from .config.loader import load_settings
from .core.exceptions import LspProxyError
from .core.logging_setup import configure_logging
from .main import run_proxy

logger = logging.getLogger("lsp_proxy")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lsp-proxy",
        description="Proxy stdio entre un éditeur et un serveur de langage (LSP)",
    )
    parser.add_argument("--config", default=None, help="Fichier TOML (défaut: $LSP_PROXY_CONFIG)")
    parser.add_argument("--timeout-ms", type=float, default=None, help="Timeout des requêtes du proxy (ms)")
    parser.add_argument("--no-control", action="store_true", help="Désactiver le control-plane HTTP")
    parser.add_argument("--log-level", default=None, help="Niveau de log (DEBUG, INFO, ...)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("workdir", help="Répertoire de travail (fichier de découverte sous proxy/)")
    parser.add_argument("command", help="Binaire du serveur de langage")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments du serveur")
    return parser


def main(argv=None):
    """Fonction principale."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except LspProxyError as e:
        print(f"❌ Configuration invalide: {e}", file=sys.stderr)
        sys.exit(2)

    if args.timeout_ms is not None:
        if args.timeout_ms <= 0:
            print("❌ --timeout-ms doit être > 0", file=sys.stderr)
            sys.exit(2)
        settings.timeout_ms = args.timeout_ms
    if args.no_control:
        settings.control_enabled = False
    if args.log_level:
        settings.log_level = args.log_level.upper()

    try:
        configure_logging(settings.log_level, settings.log_file)
    except (ValueError, OSError) as e:
        print(f"❌ Logging invalide: {e}", file=sys.stderr)
        sys.exit(2)
    logger.info(f"🚀 LSP Relay Proxy {__version__}: {args.command} {' '.join(args.args)}".rstrip())

    try:
        code = asyncio.run(run_proxy(args.workdir, args.command, args.args, settings))
    except (LspProxyError, OSError) as e:
        logger.error(f"❌ {e}")
        code = 1
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
