"""
自定义异常模块

所有业务异常都是 AppError，在 main.py 中有统一的异常处理器，
转换为 {"code", "message", "data": null} 格式的响应。

错误分类（对外信息保持通用，细节只写服务端日志）：
- 鉴权失败：401，固定消息 "Unauthorized"，不透露具体哪项校验失败
- 参数校验失败：400，消息指明具体字段
- 服务端未配置：500，缺少必需的密钥（JWT_SECRET、CRON_SECRET 等）
- 上游失败：500/502，数据库或外部服务异常
"""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码（前端用来区分错误）
    - message: 错误消息
    - status_code: HTTP 状态码

    使用示例：
        raise AppError(code=404301, message="Chat not found", status_code=404)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


def unauthorized() -> AppError:
    """鉴权失败（401），消息固定，避免被用来探测具体失败原因"""
    return AppError(code=401001, message="Unauthorized", status_code=401)


def validation_failed(message: str, *, code: int = 400001) -> AppError:
    """参数校验失败（400）"""
    return AppError(code=code, message=message, status_code=400)


def not_found(message: str, *, code: int = 404001) -> AppError:
    return AppError(code=code, message=message, status_code=404)


def not_configured(name: str) -> AppError:
    """
    服务端缺少必需配置（500）

    这是部署问题而不是客户端错误，记录 error 日志便于排查。
    """
    logger.error("server misconfiguration: %s is not set", name)
    return AppError(code=500001, message="Server is not configured", status_code=500)


def upstream_failure(message: str = "Internal server error") -> AppError:
    """数据库或外部服务失败（500）"""
    return AppError(code=500000, message=message, status_code=500)
