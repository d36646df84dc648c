"""管理员账号 CRUD 操作"""
from sqlmodel import Session, select

from skiniq.core.security import get_password_hash
from skiniq.models import AdminAccount, utc_now


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_by_email(*, session: Session, email: str) -> AdminAccount | None:
    statement = select(AdminAccount).where(AdminAccount.email == normalize_email(email))
    return session.exec(statement).first()


def create(
    *, session: Session, email: str, role: str = "admin", code: str | None = None
) -> AdminAccount:
    """把邮箱加入白名单；code 为空时由管理员首次登录时设置"""
    account = AdminAccount(
        email=normalize_email(email),
        role=role,
        password_hash=get_password_hash(code) if code else None,
    )
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


def set_code(*, session: Session, account: AdminAccount, code: str) -> AdminAccount:
    account.password_hash = get_password_hash(code)
    account.updated_at = utc_now()
    session.add(account)
    session.commit()
    session.refresh(account)
    return account
