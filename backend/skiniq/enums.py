"""
枚举类型定义模块

所有枚举都继承自 str 和 Enum，既可以直接作为字符串存库/序列化，又具有枚举的类型约束。
"""
from enum import Enum


class PaymentStatus(str, Enum):
    """
    支付状态

    - pending: 已创建，等待支付平台回调
    - completed: 支付成功（终态）
    - failed: 支付失败/取消（终态）

    终态不可回退。
    """
    pending = "pending"
    completed = "completed"
    failed = "failed"


class ProductCode(str, Enum):
    """可购买的产品"""
    plan_access = "plan_access"
    retake_topic = "retake_topic"
    retake_full = "retake_full"
    subscription_month = "subscription_month"


class SupportChatStatus(str, Enum):
    """
    客服会话状态

    - active: 用户发来新消息，等待处理
    - in_progress: 管理员正在处理
    - closed: 已关闭（用户再次来信时重新打开）
    """
    active = "active"
    in_progress = "in_progress"
    closed = "closed"


class BroadcastStatus(str, Enum):
    """
    群发消息状态

    - draft: 草稿
    - scheduled: 已排期，等待 worker 发送
    - sent: 已发送
    - failed: 发送失败（没有接收者或全部失败）
    """
    draft = "draft"
    scheduled = "scheduled"
    sent = "sent"
    failed = "failed"


class DeliveryStatus(str, Enum):
    """单个接收者的投递结果"""
    sent = "sent"
    failed = "failed"


class ClientLogLevel(str, Enum):
    debug = "debug"
    info = "info"
    warn = "warn"
    error = "error"
