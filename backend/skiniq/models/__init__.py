"""
数据库模型定义模块

本模块使用 SQLModel 定义所有数据库表结构。

模型按功能拆分：
- user.py: Mini App 用户
- admin.py: 管理员白名单
- payment.py: 支付与权益
- support.py: 客服会话与消息
- broadcast.py: 群发消息与投递记录
- client_log.py: 客户端日志
"""
from sqlmodel import SQLModel

from .admin import AdminAccount
from .base import as_utc, utc_now
from .broadcast import BroadcastLog, BroadcastMessage
from .client_log import ClientLog
from .payment import Entitlement, Payment
from .support import SupportChat, SupportMessage
from .user import User

__all__ = [
    "SQLModel",
    "utc_now",
    "as_utc",
    "User",
    "AdminAccount",
    "Payment",
    "Entitlement",
    "SupportChat",
    "SupportMessage",
    "BroadcastMessage",
    "BroadcastLog",
    "ClientLog",
]
