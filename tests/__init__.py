import os
import tempfile

# 测试使用一次性的 SQLite 库，必须在导入 core.db 之前设置
os.environ.setdefault(
    "DB_URL",
    "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="membership-test-"), "test.db"),
)
os.environ.setdefault("CONFIG_FILE", os.path.join(os.path.dirname(__file__), "config.test.yaml"))


def reset_database():
    """清空全部业务表，保证用例之间互不影响"""
    from core.db import DB
    from core.models.base import Base

    DB.create_tables()
    session = DB.get_session()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
    finally:
        session.close()
