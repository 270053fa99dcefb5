"""
Louaj Central Server - main application entry point.

Configures logging before anything else creates a logger, then exposes the
ASGI ``app`` and a ``main()`` that serves it with uvicorn.
"""

import uvicorn

from .app.factory import create_app
from .config import get_config
from .structured_logging.enhanced_logging_config import get_logger, setup_enhanced_logging

# Early logging setup - must happen before any logger creation
config = get_config()
setup_enhanced_logging(config.to_legacy_dict())

logger = get_logger(__name__)
logger.info("Logging setup completed", environment=config.logging.environment)

app = create_app()


def main() -> None:
    """Run the central server."""
    logger.info("Starting Louaj central server", host=config.server.host, port=config.server.port)
    uvicorn.run(
        "central_server.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
        access_log=True,
        use_colors=False,
    )


if __name__ == "__main__":
    main()
