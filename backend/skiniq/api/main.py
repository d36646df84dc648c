"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中。
这个 router 会被注册到主应用（skiniq/main.py）上。

路由模块说明：
- payments / entitlements: Mini App 支付与权益
- logs: 客户端日志上报、查询与定时清理
- telegram: Telegram Bot 回调
- admin_auth: 管理员登录
- admin_stats / support / broadcasts: 管理后台
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from skiniq.api.routes import (
    admin_auth,
    admin_stats,
    broadcasts,
    entitlements,
    logs,
    payments,
    support,
    telegram,
    utils,
)

api_router = APIRouter()

api_router.include_router(payments.router)  # /payments/*
api_router.include_router(entitlements.router)  # /entitlements/*
api_router.include_router(logs.router)  # /logs, /admin/logs, /cron/cleanup-logs
api_router.include_router(telegram.router)  # /telegram/*
api_router.include_router(admin_auth.router)  # /admin/login, /admin/logout, /admin/me
api_router.include_router(admin_stats.router)  # /admin/stats
api_router.include_router(support.router)  # /admin/support/*
api_router.include_router(broadcasts.router)  # /admin/broadcasts/*
api_router.include_router(utils.router)  # /utils/*
