"""Entry point for the study engine API server"""
import logging
import uvicorn

from deoglory.api.server import create_api_application
from deoglory.config import API_HOST, API_PORT, LOG_LEVEL

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the API with uvicorn"""
    logger.info(f"Starting API on {API_HOST}:{API_PORT}")
    uvicorn.run(
        create_api_application(),
        host=API_HOST,
        port=API_PORT,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
