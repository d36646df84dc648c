"""
应用配置模块

使用 Pydantic Settings 管理所有环境变量和配置。
配置从项目根目录的 .env 文件读取，支持类型验证和默认值。

关键概念：
- BaseSettings: Pydantic 的配置基类，自动从环境变量读取
- computed_field: 计算字段，根据其他字段动态生成
- model_validator: 模型验证器，用于自定义验证逻辑

注意：JWT_SECRET / CRON_SECRET 等密钥没有默认值。
缺失时由具体的调用方返回 500（服务端配置错误），而不是在启动时失败。
"""
import warnings  # 用于发出警告
from typing import Annotated, Any, Literal  # 类型注解工具

from pydantic import (
    AnyUrl,  # URL 类型验证
    BeforeValidator,  # 字段验证前的转换器
    HttpUrl,  # HTTP URL 类型验证
    PostgresDsn,  # PostgreSQL 连接字符串验证
    computed_field,  # 计算字段装饰器
    model_validator,  # 模型验证器装饰器
)
from pydantic_settings import BaseSettings, SettingsConfigDict  # 配置管理
from typing_extensions import Self  # 用于类型注解中引用自身类型


def parse_cors(v: Any) -> list[str] | str:
    """
    解析 CORS 配置值

    支持两种格式：
    1. 逗号分隔的字符串："https://a.example,https://b.example"
    2. 列表格式：["https://a.example", "https://b.example"]
    """
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    """
    应用配置类

    配置来源优先级：
    1. 环境变量（最高优先级）
    2. .env 文件
    3. 代码中的默认值（最低优先级）
    """
    model_config = SettingsConfigDict(
        # 使用项目根目录的 .env 文件（backend/ 目录的上一级）
        env_file="../.env",
        env_ignore_empty=True,  # 忽略空的环境变量
        extra="ignore",  # 忽略未定义的额外字段
    )
    API_V1_STR: str = "/api/v1"  # API 版本前缀
    PROJECT_NAME: str = "SkinIQ"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    SENTRY_DSN: HttpUrl | None = None

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        """CORS 允许的源（去除尾部斜杠）"""
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    # Snowflake 节点 ID（每个实例不同，0-1023）
    SNOWFLAKE_NODE_ID: int = 0

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "skiniq"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # 管理后台 JWT 配置
    JWT_SECRET: str | None = None  # 管理员 token 签名密钥（必须配置）
    ADMIN_TOKEN_EXPIRE_DAYS: int = 7  # token 有效期（天），无吊销列表
    ADMIN_TOKEN_ISSUER: str = "skiniq-admin"
    ADMIN_TOKEN_AUDIENCE: str = "skiniq-admin-ui"
    ADMIN_COOKIE_NAME: str = "admin_token"
    # 登录限流：同一客户端每个窗口内的最大尝试次数
    ADMIN_LOGIN_MAX_ATTEMPTS: int = 10
    ADMIN_LOGIN_WINDOW_SECONDS: int = 60
    # initial_data.py 写入白名单的第一个管理员（访问码在首次登录时设置）
    FIRST_ADMIN_EMAIL: str | None = None

    # 定时任务（cron）共享密钥
    CRON_SECRET: str | None = None

    # 支付配置
    PAYMENTS_WEBHOOK_SECRET: str | None = None  # X-Webhook-Secret 校验值
    YOOKASSA_SHOP_ID: str | None = None
    YOOKASSA_SECRET_KEY: str | None = None
    YOOKASSA_API_URL: str = "https://api.yookassa.ru/v3/payments"
    YOOKASSA_RECEIPT_EMAIL: str = "noreply@proskiniq.ru"  # 小票兜底邮箱
    YOOKASSA_TAX_SYSTEM_CODE: int = 1

    # Telegram 配置
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_API_BASE_URL: str = "https://api.telegram.org"
    TELEGRAM_WEBHOOK_SECRET: str | None = None  # X-Telegram-Bot-Api-Secret-Token
    TELEGRAM_INIT_DATA_MAX_AGE_SECONDS: int = 24 * 3600
    MINI_APP_URL: str = "https://www.proskiniq.ru"
    BOT_LINK: str = "https://t.me/skiniq_bot"

    # 管理后台缓存（进程内，无持久化）
    ADMIN_CACHE_DEFAULT_TTL_SECONDS: int = 60
    ADMIN_CACHE_SWEEP_INTERVAL_SECONDS: int = 5 * 60

    # 客服
    SUPPORT_MESSAGES_LIMIT: int = 50
    SUPPORT_AUTO_REPLY_TEXT: str = (
        "Спасибо за сообщение! Мы получили его и ответим в ближайшее время."
    )

    # 日志保留天数
    LOG_RETENTION_DAYS: int = 7

    # 群发：Telegram 限速，两条消息之间的间隔（毫秒），约 25 条/秒
    BROADCAST_SEND_DELAY_MS: int = 40
    # 认领后超过这个时间仍是 scheduled 的群发视为 worker 已中断，直接置为 failed
    BROADCAST_CLAIM_TIMEOUT_SECONDS: int = 30 * 60

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值 "changethis"

        本地环境只警告，其他环境直接报错。
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        """确保敏感配置不使用默认值"""
        self._check_default_secret("JWT_SECRET", self.JWT_SECRET)
        self._check_default_secret("CRON_SECRET", self.CRON_SECRET)
        self._check_default_secret("PAYMENTS_WEBHOOK_SECRET", self.PAYMENTS_WEBHOOK_SECRET)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)

        return self


# 创建全局配置实例，整个应用共享
settings = Settings()  # type: ignore
