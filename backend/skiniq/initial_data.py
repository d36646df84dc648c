"""
初始数据脚本

1. 建表（已存在的表不会改动）
2. 把 FIRST_ADMIN_EMAIL 加入管理员白名单（已存在时跳过）

访问码不在这里设置：管理员第一次登录时通过 newCode + confirmCode 自己设置。

在 backend_pre_start 之后执行：python -m skiniq.initial_data
"""
import logging

from sqlalchemy import Engine
from sqlmodel import Session, SQLModel

from skiniq import crud
from skiniq.core.config import settings
from skiniq.core.db import engine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_tables(db_engine: Engine) -> None:
    SQLModel.metadata.create_all(db_engine)


def init_db(session: Session) -> None:
    email = settings.FIRST_ADMIN_EMAIL
    if not email:
        logger.info("FIRST_ADMIN_EMAIL is not set, skipping admin whitelist seed")
        return
    if crud.get_admin_by_email(session=session, email=email) is not None:
        logger.info("admin %s already whitelisted", email)
        return
    account = crud.create_admin(session=session, email=email)
    logger.info("admin %s whitelisted (id=%s)", account.email, account.id)


def main() -> None:
    logger.info("Creating initial data")
    create_tables(engine)
    with Session(engine) as session:
        init_db(session)
    logger.info("Initial data created")


if __name__ == "__main__":  # pragma: no cover
    main()
