"""kubeoauth entry point.

Commands:
  serve       Run the login web app and the background refresh scheduler.
  sweep       Run one refresh sweep and print the report.
  provision   Provision (or re-provision) one tenant and print the outcome.
"""

import argparse
import asyncio
import json
import logging
import sys

from kubeoauth import __version__
from kubeoauth.config import get_settings
from kubeoauth.errors import ConfigError
from kubeoauth.logging_setup import setup_logging
from kubeoauth.manager import CredentialLifecycleManager

logger = logging.getLogger(__name__)


async def _run_sweep() -> dict:
    manager = CredentialLifecycleManager.from_settings(get_settings())
    try:
        report = await manager.scheduler.sweep()
    finally:
        await manager.close()
    return report.as_dict()


async def _run_provision(tenant_id: str) -> dict:
    manager = CredentialLifecycleManager.from_settings(get_settings())
    try:
        outcome = await manager.provisioner.provision(tenant_id)
    finally:
        await manager.close()
    return {
        "tenant": outcome.tenant_id,
        "namespace": outcome.namespace,
        "state": outcome.state.name,
        "steps": [
            {"step": s.name, "status": s.status.value, "error": s.error} for s in outcome.steps
        ],
    }


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="kubeoauth",
        description="Per-tenant OAuth credentials on Kubernetes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  kubeoauth serve                    Serve on :8443 with TLS (tls.crt / tls.key)
  kubeoauth serve --no-tls --port 8080
  kubeoauth sweep                    Refresh every stored credential once
  kubeoauth provision alice          Bring tenant 'alice' to Ready
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=None, help="Override KUBEOAUTH_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the web app and refresh scheduler")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8443)
    serve.add_argument("--no-tls", dest="tls", action="store_false", help="Serve plain HTTP")
    serve.add_argument("--cert-file", default="tls.crt")
    serve.add_argument("--key-file", default="tls.key")

    sub.add_parser("sweep", help="Run one refresh sweep")

    provision = sub.add_parser("provision", help="Provision one tenant")
    provision.add_argument("tenant", help="External identity (e.g. Spotify user id)")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(level=args.log_level or settings.log_level)

    try:
        if args.command == "serve":
            from kubeoauth.web import run_server

            run_server(
                settings,
                host=args.host,
                port=args.port,
                tls=args.tls,
                cert_file=args.cert_file,
                key_file=args.key_file,
            )
        elif args.command == "sweep":
            settings.validate_for_serving()
            print(json.dumps(asyncio.run(_run_sweep()), indent=2))
        elif args.command == "provision":
            print(json.dumps(asyncio.run(_run_provision(args.tenant)), indent=2))
    except ConfigError as e:
        logger.error("%s", e)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
