"""Main entry point for the Lighthouse collector service."""

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from .api import create_server
from .config import Settings, load_settings
from .database import Database
from .eloverblik_client import EloverblikClient
from .errors import (
    ConfigError,
    DatabaseConnectError,
    ExpiredApplicationTokenError,
    LighthouseError,
    ProviderError,
    TokenError,
)
from .norlys_client import NorlysClient

logger = logging.getLogger("lighthouse")

# Fixed delay after a failed cycle before it is retried from the start
BACKOFF_SECONDS = 60


@contextmanager
def step(description: str):
    """Log a failing cycle step before the error reaches the cycle loop."""
    try:
        yield
    except LighthouseError as e:
        logger.error(f"Error {description}: {e}")
        raise


class Collector:
    """Runs the Norlys price cycle and the Eloverblik metering cycle.

    Each cycle is an asyncio task that repeats until ``stop()``. A failure
    anywhere in a cycle is logged, followed by a fixed BACKOFF_SECONDS
    sleep, then the cycle starts over. Writes are upserts, so redoing work
    from a partially failed attempt is safe.
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        norlys_client: NorlysClient,
        eloverblik_client: Optional[EloverblikClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.database = database
        self.norlys_client = norlys_client
        self.eloverblik_client = eloverblik_client
        self.sleep = sleep

        self.running = False
        self._tasks: List[asyncio.Task] = []

        # Set after the provider rejects the request token
        self._force_token_refresh = False

    def start(self):
        """Start the polling cycles as background tasks."""
        logger.info("=" * 60)
        logger.info("Lighthouse - Collector Service")
        logger.info("=" * 60)
        logger.info(f"Norlys polling interval: {self.settings.norlys_api.update_prices_interval}s")
        if self.eloverblik_client:
            logger.info(f"Eloverblik polling interval: {self.settings.metering_update_interval}s")
            logger.info(f"Request token disk cache: {'ENABLED' if self.settings.save_request_token_to_disk else 'DISABLED'}")
        else:
            logger.info("Eloverblik: DISABLED")
        logger.info("-" * 60)

        self.running = True
        self._tasks.append(asyncio.create_task(self.price_cycle(), name="norlys-prices"))
        if self.eloverblik_client:
            self._tasks.append(asyncio.create_task(self.metering_cycle(), name="eloverblik-metering"))

    async def stop(self):
        """Stop the cycles and release clients and the database."""
        logger.info("Stopping collector service...")
        self.running = False

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.norlys_client.close()
        if self.eloverblik_client:
            await self.eloverblik_client.close()
        self.database.close()

        logger.info("Collector service stopped")

    async def _backoff(self, cycle: str, error: Exception):
        if not isinstance(error, LighthouseError):
            logger.exception(f"{cycle}: unexpected error: {error}")
        logger.info(f"{cycle}: retrying in {BACKOFF_SECONDS} seconds")
        await self.sleep(BACKOFF_SECONDS)

    # =========================================================================
    # Norlys prices
    # =========================================================================

    async def update_prices(self) -> int:
        """Fetch the configured window of prices and upsert them.

        Returns:
            Number of price rows written
        """
        logger.info("Getting prices from Norlys...")
        with step("getting prices from Norlys"):
            prices = await self.norlys_client.get_prices(self.settings.norlys_api.number_of_days)

        logger.info("Saving prices to database")
        count = 0
        with step("saving prices to database"):
            for result in prices:
                count += self.database.save_pricing_result(result)
        return count

    async def price_cycle(self):
        while self.running:
            try:
                count = await self.update_prices()
            except Exception as e:
                await self._backoff("Norlys", e)
                continue

            logger.info(f"Saved {count} prices")
            await self.sleep(self.settings.norlys_api.update_prices_interval)

    # =========================================================================
    # Eloverblik metering data
    # =========================================================================

    async def update_metering_data(self) -> int:
        """Refresh the request token, then fetch and upsert all metering data.

        Returns:
            Number of meter readings written
        """
        client = self.eloverblik_client

        logger.info("Getting request token from Eloverblik")
        with step("getting request token from Eloverblik"):
            await client.ensure_request_token(
                force_refresh=self._force_token_refresh,
                use_disk_cache=self.settings.save_request_token_to_disk,
            )
        self._force_token_refresh = False

        logger.info("Getting metering points from Eloverblik")
        with step("getting metering points from Eloverblik"):
            metering_points = await client.get_metering_points()

        with step("saving metering points to database"):
            self.database.save_metering_points(metering_points)

        now = datetime.now(timezone.utc)
        from_date = now - timedelta(days=self.settings.eloverblik.number_of_days)
        to_date = now - timedelta(hours=1)

        count = 0
        for mp in metering_points:
            with step(f"getting meter time-series data for {mp.metering_point_id}"):
                readings = await client.get_meter_readings(mp.metering_point_id, from_date, to_date)

            if readings:
                with step(f"saving meter time-series data for {mp.metering_point_id}"):
                    count += self.database.save_meter_readings(readings)
        return count

    async def metering_cycle(self):
        while self.running:
            try:
                count = await self.update_metering_data()
            except Exception as e:
                if isinstance(e, ProviderError) and e.status == 401:
                    self._force_token_refresh = True
                if isinstance(e, ExpiredApplicationTokenError):
                    logger.error("=" * 60)
                    logger.error("ELOVERBLIK: APPLICATION TOKEN EXPIRED!")
                    logger.error("  Meter data collection is STOPPED until the token is replaced.")
                    logger.error("  Create a new token on eloverblik.dk, set LighthouseToken")
                    logger.error("  in lighthouse.toml and restart the service.")
                    logger.error("=" * 60)
                await self._backoff("Eloverblik", e)
                continue

            logger.info(f"All done, saved {count} meter readings")
            await self.sleep(self.settings.metering_update_interval)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Collects Norlys electricity prices and Eloverblik meter data",
    )
    parser.add_argument("--config", type=Path, default=None,
                        help="Path to lighthouse.toml (default: beside the program)")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 on shutdown, 1 on a startup failure)
    """
    args = parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        logger.error(str(e))
        return 1
    logging.getLogger().setLevel(settings.log_level)

    database = Database.from_config(settings.database)
    try:
        database.connect()
    except DatabaseConnectError as e:
        logger.error(str(e))
        return 1

    eloverblik_client = None
    if settings.eloverblik.fetch_data_from_eloverblik:
        eloverblik_client = EloverblikClient(
            base_url=settings.eloverblik.url,
            token_path=settings.request_token_path,
        )
        try:
            eloverblik_client.set_application_token(settings.eloverblik.lighthouse_token)
        except TokenError as e:
            logger.error(f"Eloverblik application token rejected: {e}")
            database.close()
            return 1

    norlys_client = NorlysClient(settings.norlys_api.url, sector=settings.norlys_api.sector)
    collector = Collector(settings, database, norlys_client, eloverblik_client)
    server = create_server(settings.api_port)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def shutdown_handler():
        logger.info("Shutdown signal received")
        server.should_exit = True

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    collector.start()
    logger.info(f"Listening for HTTP requests on port {settings.api_port}")
    try:
        await server.serve()
    finally:
        await collector.stop()
    return 0


def run():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == "__main__":
    run()
