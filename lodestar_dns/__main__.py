"""
Main entry point for Lodestar-DNS.
"""

import asyncio
import logging
import sys
from pathlib import Path

from lodestar_dns.config.config import Config
from lodestar_dns.controller.controller import Controller
from lodestar_dns.provider.errors import ConfigurationError
from lodestar_dns.provider.pihole import PiholeProvider
from lodestar_dns.source.static import StaticSource

# Define the path to the version file within the container
VERSION_FILE_PATH = Path("/app/VERSION")


async def run():
    """Load configuration, then reconcile once or forever."""
    app_version = "unknown"
    try:
        if VERSION_FILE_PATH.is_file():
            app_version = VERSION_FILE_PATH.read_text().strip()
    except OSError as e:
        logging.warning(f"Could not read version file {VERSION_FILE_PATH}: {e}")

    # Setup logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logger = logging.getLogger("lodestar-dns")
    logger.info(f"Starting Lodestar-DNS v{app_version}")

    # Load configuration
    config_path = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    config = Config.from_yaml(config_path)

    # Set log level from configuration
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.getLogger().setLevel(log_level)
    # Set httpx logger level to WARNING unless root is DEBUG
    httpx_log_level = logging.DEBUG if log_level == logging.DEBUG else logging.WARNING
    logging.getLogger("httpx").setLevel(httpx_log_level)
    logging.getLogger("httpcore").setLevel(httpx_log_level)

    if config.provider != "pihole":
        raise ConfigurationError(f"unknown provider: {config.provider}")

    # Initialize components
    source = StaticSource(config.endpoints)
    async with await PiholeProvider.create(config) as provider:
        controller = Controller(
            source,
            provider,
            interval=config.parse_duration(config.interval),
            policy=config.policy,
        )

        if config.once:
            await controller.run_once()
        else:
            await controller.run_reconciliation_loop()


def main():
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\nShutting down Lodestar-DNS")
        sys.exit(0)
    except ConfigurationError as e:
        logging.getLogger("lodestar-dns").error(f"Configuration error: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
