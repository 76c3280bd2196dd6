"""CLI entrypoint for the encrypted KV gateway."""
from __future__ import annotations

import logging
import sys

from .api import create_app, run_api
from .config import settings
from .vault import EncryptedVault


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s:%(lineno)d | %(message)s",
        stream=sys.stdout,
    )


def main() -> None:
    configure_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    logger.info("Starting encrypted KV gateway")
    logger.info(
        "Key manager endpoint=%s program=%s (%s)",
        settings.key_manager_call_url,
        settings.program.url,
        settings.program.hash[:12],
    )
    logger.info(
        "NEAR rpc=%s contract=%s signer lookup=%s",
        settings.near_rpc_url,
        settings.deferred.contract_id,
        settings.near_tx_signer_id,
    )

    vault = EncryptedVault.from_settings(settings)
    logger.info("KV scans on table=%s timeout=%.1fs", vault.queries.table, vault.queries.timeout_seconds)
    app = create_app(vault, settings)
    logger.info("HTTP API available at http://%s:%s", settings.api_host, settings.api_port)
    run_api(app, settings)


if __name__ == "__main__":
    main()
