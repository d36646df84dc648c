"""CRUD 操作模块"""
from .admin import create as create_admin
from .admin import get_by_email as get_admin_by_email
from .admin import set_code as set_admin_code
from .user import get_by_telegram_id as get_user_by_telegram_id
from .user import get_or_create_from_telegram as get_or_create_user_from_telegram

__all__ = [
    "create_admin",
    "get_admin_by_email",
    "set_admin_code",
    "get_user_by_telegram_id",
    "get_or_create_user_from_telegram",
]
