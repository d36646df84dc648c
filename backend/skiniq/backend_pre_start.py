"""
应用启动前检查脚本

数据库容器可能还在初始化，启动前先等数据库可连接，
再执行 initial_data（建表、初始管理员）。
"""
import logging

from sqlalchemy import Engine
from sqlmodel import Session, select
from tenacity import after_log, before_log, retry, stop_after_attempt, wait_fixed

from skiniq.core.db import engine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5  # 每秒一次，最多等 5 分钟
wait_seconds = 1


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def init(db_engine: Engine) -> None:
    """执行 SELECT 1，失败时由 tenacity 重试"""
    try:
        with Session(db_engine) as session:
            session.exec(select(1))
    except Exception as e:
        logger.error("database is not ready: %s", e)
        raise


def main() -> None:
    logger.info("Waiting for database")
    init(engine)
    logger.info("Database is ready")


if __name__ == "__main__":  # pragma: no cover
    main()
