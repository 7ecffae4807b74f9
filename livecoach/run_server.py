import logging

from livecoach.config import Config, configure_logging

logger = logging.getLogger(__name__)


def main():
    configure_logging()
    for problem in Config.validate():
        logger.warning("Config: %s", problem)

    import uvicorn
    uvicorn.run(
        "livecoach.main:app",
        host=Config.HOST,
        port=Config.PORT,
        log_level=Config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
