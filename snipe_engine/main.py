import asyncio
import logging
import sys
from typing import Optional

import click

from .config.settings import ConfigManager, EngineSettings
from .core.engine import SnipeEngine

logger = logging.getLogger(__name__)


async def run(
    settings: EngineSettings,
    demo: bool = False,
    duration: Optional[float] = None,
    status_interval: float = 10.0
):
    """Run the engine until ``duration`` elapses or the task is cancelled."""
    engine = SnipeEngine(settings)
    if demo:
        engine.add_demo_data()

    await engine.start()
    engine.start_bot()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration else None

    try:
        while deadline is None or loop.time() < deadline:
            if deadline is None:
                await asyncio.sleep(status_interval)
            else:
                await asyncio.sleep(max(0.0, min(status_interval, deadline - loop.time())))
            status = engine.status()
            logger.info(
                f"Status: {status.active_snipes} active, {status.total_transactions} settled, "
                f"profit {status.total_profit:.4f}, success {status.success_rate:.1f}%, "
                f"queue {status.transaction_queue}"
            )
    finally:
        await engine.shutdown()


@click.command()
@click.option(
    "--config",
    default=None,
    help="Path to configuration file"
)
@click.option("--demo/--no-demo", default=True, help="Seed a sample snipe config")
@click.option("--duration", type=float, default=None, help="Seconds to run (default: forever)")
@click.option("--seed", type=int, default=None, help="RNG seed for a reproducible run")
def main(config: Optional[str], demo: bool, duration: Optional[float], seed: Optional[int]):
    """Run the snipe simulation headless."""
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    settings = ConfigManager(config).settings
    logging.getLogger().setLevel(settings.monitoring.log_level.upper())
    if seed is not None:
        settings = settings.model_copy(update={"seed": seed})

    try:
        asyncio.run(run(settings, demo=demo, duration=duration))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Engine crashed: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
