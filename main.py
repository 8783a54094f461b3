"""
Crosswatch - EMA crossover monitor with per-symbol price-change models.

Usage:
    python main.py --env dev             # Development mode
    python main.py --env prod --no-ml    # Alerts only, no training or predictions
"""

from __future__ import annotations
import asyncio
import argparse
import signal
import sys

from config.config_manager import ConfigManager
from crosswatch.application import Orchestrator
from crosswatch.domain.exceptions import FatalError
from crosswatch.infrastructure.adapters import BinanceFuturesMarketData, LoggingAlertSink
from crosswatch.utils import flush_all_loggers, get_logger, shutdown_logging
from crosswatch.utils.logging_setup import setup_category_logging

logger = get_logger("crosswatch.main")


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="EMA crossover monitor for Binance USDT-M futures",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --env dev                    # Run with config/base.yaml + config/dev.yaml
  python main.py --env prod --log-level DEBUG
  python main.py --config-dir /etc/crosswatch --no-ml
        """
    )

    parser.add_argument(
        "--env",
        type=str,
        default="dev",
        help="Environment name; loads {config-dir}/{env}.yaml over base.yaml (default: dev)"
    )

    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Directory holding base.yaml, {env}.yaml and secrets.yaml (default: config)"
    )

    parser.add_argument(
        "--no-ml",
        action="store_true",
        help="Disable feature recording, training and predictions"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level for all categories)"
    )

    parser.add_argument(
        "--console",
        action="store_true",
        help="Force console log output even if disabled in config"
    )

    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> None:
    """Main async entry point."""
    config = ConfigManager(config_dir=args.config_dir, env=args.env).load()
    if args.no_ml:
        config.ml.enabled = False

    setup_category_logging(
        env=args.env,
        log_dir=config.logging.log_dir,
        level=args.log_level or config.logging.level,
        console=args.console or config.logging.console,
        verbose=args.verbose,
        json_files=config.logging.json,
    )
    logger.info(
        "Starting crosswatch",
        extra={"data": {"env": args.env, "ml_enabled": config.ml.enabled, "interval": config.stream.interval}},
    )

    provider = BinanceFuturesMarketData(
        rest_base_url=config.stream.rest_base_url,
        ws_base_url=config.stream.ws_base_url,
        request_timeout_sec=config.stream.request_timeout_sec,
        max_retries=config.stream.max_request_retries,
    )
    orchestrator = Orchestrator(config, provider, LoggingAlertSink())

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass  # Windows

    try:
        await orchestrator.start()
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        await orchestrator.shutdown()
        await provider.close()
        flush_all_loggers()


def main() -> None:
    """Main entry point."""
    args = parse_args()

    try:
        asyncio.run(main_async(args))
    except KeyboardInterrupt:
        print("Shutdown requested")
    except FatalError as e:
        logger.critical(f"Fatal error: {e}")
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Unhandled error: {e}", exc_info=True)
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        shutdown_logging()


if __name__ == "__main__":
    main()
