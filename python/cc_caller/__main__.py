"""
cc-caller server entry point.

Usage:
    python -m cc_caller

Environment Variables:
    CC_CALLER_HOST - Bind host (default: 0.0.0.0)
    CC_CALLER_PORT - HTTP/WebSocket port (default: 3001)
    CC_CALLER_METRICS_ENABLED - Expose Prometheus metrics (true/false)
    VAPID_PUBLIC_KEY, VAPID_PRIVATE_KEY, VAPID_SUBJECT - Web Push credentials
    CC_CALLER_LOG_LEVEL - Log level (DEBUG, INFO, WARNING, ERROR)
"""

import asyncio
import signal

from .api import CallerServer
from .config import get_config, setup_logging
from .metrics import get_metrics

# Initialize logging
logger = setup_logging()


async def main():
    """Main entry point."""
    config = get_config()
    if config.debug:
        setup_logging(level="DEBUG")

    metrics = None
    if config.metrics_enabled:
        metrics = get_metrics()
        metrics.port = config.metrics_port
        metrics.start()

    server = CallerServer(config, metrics=metrics)

    # Handle shutdown signals
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown requested...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: signal_handler())

    try:
        await server.start()
        await shutdown_event.wait()
    except OSError as e:
        logger.error(f"Fatal error: {e}")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
