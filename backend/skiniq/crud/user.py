"""用户 CRUD 操作"""
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from skiniq.core.telegram_auth import TelegramWebAppUser
from skiniq.models import User, utc_now


def get_by_telegram_id(*, session: Session, telegram_id: str) -> User | None:
    """根据 Telegram 用户 ID 查询用户"""
    statement = select(User).where(User.telegram_id == telegram_id)
    return session.exec(statement).first()


def get_or_create_from_telegram(*, session: Session, tg_user: TelegramWebAppUser) -> User:
    """
    根据 initData 中的 Telegram 用户获取或创建用户

    每次调用都会刷新资料字段和 last_active_at。
    """
    telegram_id = str(tg_user.id)
    now = utc_now()
    user = get_by_telegram_id(session=session, telegram_id=telegram_id)
    if user is None:
        user = User(telegram_id=telegram_id)
    user.first_name = tg_user.first_name
    user.last_name = tg_user.last_name
    user.username = tg_user.username
    user.language_code = tg_user.language_code
    user.last_active_at = now
    user.updated_at = now
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        # 同一用户的并发首次请求
        session.rollback()
        user = get_by_telegram_id(session=session, telegram_id=telegram_id)
        if user is None:
            raise
        return user
    session.refresh(user)
    return user
