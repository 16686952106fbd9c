import logging

import uvicorn

from .api import create_app
from .config import Settings


def main():
    settings = Settings.from_env()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger("pg_jobqueue")
    logger.info(f"Starting server on port {settings.port}")

    # uvicorn handles SIGINT/SIGTERM and runs the app lifespan, which stops the workers
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
