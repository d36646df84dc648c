"""
数据库连接模块

管理数据库引擎的创建。这里不建表：生产环境由 initial_data 建表，
测试中使用 SQLModel.metadata.create_all 在 SQLite 上建表。
"""
from sqlmodel import create_engine

from skiniq.core.config import settings

# create_engine 会创建连接池，第一次使用时才真正连接
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)
