"""Entry point of the data pipe host"""

import uvicorn
from .api.app import create_app
from .common.config import settings
from .common.logging import configure_logging, get_logger

configure_logging(debug=settings.debug)
logger = get_logger(__name__)


def main():
    """Serve the host API"""
    app = create_app()
    logger.info(
        "Data pipe host starting",
        host=settings.api_host,
        port=settings.api_port,
        connectors=app.state.registry.list_connectors()
    )
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)


if __name__ == "__main__":
    main()
