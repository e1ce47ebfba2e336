"""Entry point for the modal signer bridge.

Loads configuration, opens the credential store, wires the signing and
relay clients, and serves the FastAPI app until SIGTERM/SIGINT.
"""

from __future__ import annotations

import asyncio
import os
import signal

import structlog
import uvicorn

from modal_signer import __version__
from modal_signer.logging import configure_logging

configure_logging()

from modal_signer.api.middleware import get_cors_origins
from modal_signer.api.server import create_app
from modal_signer.config import Config
from modal_signer.core.credentials import SqliteCredentialStore
from modal_signer.core.pipeline import build_pipelines, build_services

log = structlog.get_logger()


async def run_server(app: object, host: str, port: int) -> None:
    """Run uvicorn as an async task."""
    config = uvicorn.Config(
        app, host=host, port=port, log_level="info",
        timeout_graceful_shutdown=10,
    )
    server = uvicorn.Server(config)
    await server.serve()


async def async_main() -> None:
    """Start the bridge API server."""
    config = Config()
    warnings = config.validate()
    for w in warnings:
        log.warning("config_warning", msg=w)

    store = SqliteCredentialStore(config.credentials_db_path or None)
    services = build_services(config, store)
    register_peer, submit_winner = build_pipelines(services)

    app = create_app(
        register_peer=register_peer,
        submit_winner=submit_winner,
        chain=config.chain,
        chain_id=config.chain_info.chain_id,
        cors_origins=get_cors_origins(config.cors_origins),
    )

    log.info(
        "bridge_starting",
        version=__version__,
        host=config.api_host,
        port=config.api_port,
        chain=config.chain,
        contract=config.smart_contract_address,
        credentials_db=config.credentials_db_path or ":memory:",
        log_format=os.getenv("LOG_FORMAT", "console"),
    )

    server_task = asyncio.create_task(run_server(app, config.api_host, config.api_port))

    shutdown_event = asyncio.Event()

    def _shutdown(sig: signal.Signals) -> None:
        log.info("shutdown_signal", signal=sig.name)
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown, sig)

    # A server that exits on its own (e.g. port in use) also ends the process
    server_task.add_done_callback(lambda _: shutdown_event.set())

    await shutdown_event.wait()
    log.info("shutting_down")
    server_task.cancel()
    try:
        await asyncio.wait_for(
            asyncio.gather(server_task, return_exceptions=True),
            timeout=15.0,
        )
    except asyncio.TimeoutError:
        log.warning("shutdown_timeout", msg="Server did not finish within 15s")
    await services.close()
    store.close()
    log.info("shutdown_complete")


def main() -> None:
    """Start the modal signer bridge."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
