"""
产品 → 权益映射

所有授予权益的代码路径（创建支付时的已支付分支、支付回调、本地测试回调）
都必须调用这里，保证业务规则只有一份。两个函数都是全函数，没有错误分支。
"""
from __future__ import annotations

import calendar
from datetime import datetime, timedelta

DEFAULT_ENTITLEMENT_CODE = "paid_access"

_ENTITLEMENT_BY_PRODUCT: dict[str, str] = {
    "plan_access": "paid_access",
    "retake_topic": "retake_topic_access",
    "retake_full": "retake_full_access",
    "subscription_month": "subscription_active",
}

# retake_topic 是一次性权益，7 天是为了容忍时钟和处理延迟
_VALIDITY_BY_PRODUCT: dict[str, timedelta] = {
    "plan_access": timedelta(days=28),
    "retake_topic": timedelta(days=7),
    "retake_full": timedelta(days=28),
}


def entitlement_code_for_product(product_code: str) -> str:
    """Unknown products fall back to paid_access."""
    return _ENTITLEMENT_BY_PRODUCT.get(product_code, DEFAULT_ENTITLEMENT_CODE)


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar-month shift; the day is clamped to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def calculate_valid_until(product_code: str, now: datetime) -> datetime:
    if product_code == "subscription_month":
        return add_months(now, 1)
    validity = _VALIDITY_BY_PRODUCT.get(product_code)
    if validity is not None:
        return now + validity
    return add_months(now, 12)
