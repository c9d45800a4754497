import logging


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # motor/pymongo heartbeats are noisy at DEBUG
    logging.getLogger("pymongo").setLevel(max(logging.INFO, logging.getLogger().level))
