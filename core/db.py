import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from core.config import cfg
from core.log import get_logger

logger = get_logger(__name__)

DEFAULT_DB_URL = "sqlite:///data/membership.db"


def _resolve_db_url() -> str:
    return str(os.getenv("DB_URL") or cfg.get("db", DEFAULT_DB_URL) or DEFAULT_DB_URL)


class Database:
    def __init__(self, url: str = None):
        self.url = url or _resolve_db_url()
        connect_args = {}
        if self.url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            path = self.url.split(":///", 1)[-1]
            folder = os.path.dirname(path)
            if folder and path != ":memory:":
                os.makedirs(folder, exist_ok=True)
        self.engine = create_engine(self.url, connect_args=connect_args, pool_pre_ping=True)
        self._session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def get_session(self):
        return self._session_factory()

    def create_tables(self):
        from core.models.base import Base
        import core.models  # noqa: F401  注册全部模型

        Base.metadata.create_all(self.engine)


DB = Database()
