import logging
import os

PACKAGE_DIR = os.path.dirname(__file__)


class Settings:
    def __init__(self):
        # Persisted file next to the package unless overridden
        self.db_path = os.environ.get("JUDGING_DB_PATH", os.path.join(PACKAGE_DIR, "judging.sqlite"))
        # How many teams each judge sends to the finals
        self.top_n = int(os.environ.get("JUDGING_TOP_N", "2"))
        self.dashboard_url = os.environ.get("JUDGING_DASHBOARD_URL", "http://localhost:8000/judge")
        self.log_level = os.environ.get("JUDGING_LOG_LEVEL", "INFO").upper()
        self.host = os.environ.get("JUDGING_HOST", "127.0.0.1")
        self.port = int(os.environ.get("JUDGING_PORT", "8000"))


_settings = Settings()


def get_settings() -> Settings:
    return _settings


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, _settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
