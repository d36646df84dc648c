"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

关键概念：
- 对外字段统一使用 camelCase（Mini App 与管理后台都是 JS 前端），
  Python 侧仍然是 snake_case，通过 alias_generator 自动转换
- ID 以字符串返回：Snowflake ID 超出 JS Number 的安全整数范围
- 这些模型不是数据库表，只用于 API 数据交换
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from skiniq.enums import BroadcastStatus, ClientLogLevel, PaymentStatus, SupportChatStatus

# ============================================================
# 通用模型
# ============================================================


class CamelModel(BaseModel):
    """请求和响应都使用 camelCase，同时允许按 Python 字段名构造"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Message(BaseModel):
    message: str


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据，错误时为 None）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 401001, "message": "Unauthorized", "data": None}
    """
    code: int = 0
    message: str = "success"
    data: Any | None = None


# ============================================================
# 管理员登录
# ============================================================


class AdminLoginRequest(CamelModel):
    """
    管理员登录请求

    已设置访问码：只需要 email + code。
    首次登录（白名单中但还没有访问码）：需要 newCode + confirmCode。
    """
    email: str = Field(min_length=3, max_length=255)
    code: str | None = Field(default=None, max_length=128)
    new_code: str | None = Field(default=None, max_length=128)
    confirm_code: str | None = Field(default=None, max_length=128)


class AdminIdentity(CamelModel):
    id: str
    role: str


class AdminLoginData(CamelModel):
    token: str
    admin: AdminIdentity


# ============================================================
# 支付与权益
# ============================================================


class PaymentCreateRequest(CamelModel):
    product_code: str = Field(min_length=1, max_length=64)
    idempotency_key: str | None = Field(default=None, min_length=8, max_length=128)
    customer_phone: str | None = Field(default=None, max_length=32)


class PaymentCreateData(CamelModel):
    payment_id: str
    status: PaymentStatus
    amount: int  # 最小货币单位
    currency: str
    payment_url: str | None = None
    has_access: bool | None = None  # 仅在支付已完成时返回


class WebhookAmount(BaseModel):
    value: str | float | int | None = None
    currency: str | None = None


class WebhookObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str | None = None
    amount: WebhookAmount | None = None


class PaymentWebhookPayload(BaseModel):
    """
    支付回调载荷

    兼容两种格式：
    - YooKassa: {"event": "payment.succeeded", "object": {"id", "status", "amount": {...}}}
    - 扁平格式: {"paymentId": "...", "status": "succeeded"}
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    event: str | None = None
    payment_object: WebhookObject | None = Field(default=None, alias="object")
    payment_id: str | None = Field(default=None, alias="paymentId")
    status: str | None = None
    amount: WebhookAmount | None = None

    @property
    def provider_payment_id(self) -> str | None:
        if self.payment_object is not None:
            return self.payment_object.id
        return self.payment_id

    @property
    def provider_status(self) -> str | None:
        if self.payment_object is not None and self.payment_object.status:
            return self.payment_object.status
        if self.status:
            return self.status
        # "payment.succeeded" -> "succeeded"
        if self.event and "." in self.event:
            return self.event.rsplit(".", 1)[1]
        return None

    @property
    def provider_amount(self) -> WebhookAmount | None:
        if self.payment_object is not None and self.payment_object.amount is not None:
            return self.payment_object.amount
        return self.amount


class SimulatedWebhookRequest(CamelModel):
    payment_id: int
    status: str = "succeeded"


class WebhookResultData(CamelModel):
    ok: bool = True
    processed: bool
    status: PaymentStatus | None = None
    reason: str | None = None


class EntitlementData(CamelModel):
    code: str
    valid_until: datetime | None = None
    granted_from_payment_id: str
    created_at: datetime


class EntitlementCheckData(CamelModel):
    code: str
    has_access: bool
    valid_until: datetime | None = None


class EntitlementsData(CamelModel):
    entitlements: list[EntitlementData]


class PaymentStatusData(CamelModel):
    """兼容旧前端的支付状态（已废弃，请改用 /entitlements/check）"""
    paid: bool
    valid_until: datetime | None = None


# ============================================================
# 客服
# ============================================================


class SupportChatData(CamelModel):
    id: str
    user_id: str
    telegram_id: str
    name: str | None = None
    username: str | None = None
    status: SupportChatStatus
    unread: int
    last_message: str | None = None
    updated_at: datetime


class SupportChatsData(CamelModel):
    chats: list[SupportChatData]


class SupportMessageData(CamelModel):
    id: str
    text: str
    is_admin: bool
    created_at: datetime


class SupportMessagesData(CamelModel):
    messages: list[SupportMessageData]


class ChatIdRequest(CamelModel):
    chat_id: int


class ChatStatusRequest(CamelModel):
    chat_id: int
    # 这里不用枚举：非法状态由服务层返回专用错误码 400301
    status: str = Field(min_length=1, max_length=32)


class SupportSendRequest(CamelModel):
    chat_id: int
    text: str = Field(min_length=1, max_length=4096)


class SupportSendData(CamelModel):
    message: SupportMessageData
    delivered: bool


# ============================================================
# 群发
# ============================================================


class BroadcastButton(BaseModel):
    text: str = Field(min_length=1, max_length=64)
    url: str = Field(min_length=1, max_length=1024)


class BroadcastCreateRequest(CamelModel):
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1, max_length=4096)
    scheduled_at: datetime | None = None
    image_url: str | None = Field(default=None, max_length=1024)
    buttons: list[BroadcastButton] | None = Field(default=None, max_length=8)
    send_to_all: bool = True


class BroadcastScheduleRequest(CamelModel):
    scheduled_at: datetime | None = None  # 为空表示立即发送


class BroadcastData(CamelModel):
    id: str
    title: str
    message: str
    status: BroadcastStatus
    scheduled_at: datetime | None = None
    image_url: str | None = None
    buttons: list[dict[str, str]] | None = None
    send_to_all: bool
    total_count: int
    sent_count: int
    failed_count: int
    created_at: datetime
    sent_at: datetime | None = None


class BroadcastsData(CamelModel):
    broadcasts: list[BroadcastData]


class BroadcastWorkerData(CamelModel):
    processed: bool
    broadcast: BroadcastData | None = None


# ============================================================
# 客户端日志
# ============================================================


class ClientLogCreateRequest(CamelModel):
    level: ClientLogLevel
    message: str = Field(min_length=1, max_length=5000)
    context: dict[str, Any] | None = None
    url: str | None = Field(default=None, max_length=1024)
    user_agent: str | None = None


class ClientLogData(CamelModel):
    id: str
    user_id: str | None = None
    level: ClientLogLevel
    message: str
    context: dict[str, Any] | None = None
    url: str | None = None
    user_agent: str | None = None
    created_at: datetime


class ClientLogsData(CamelModel):
    logs: list[ClientLogData]
    count: int


class LogsDeletedData(CamelModel):
    deleted: int
    days: int
