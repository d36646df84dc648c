"""
FastAPI 应用主入口

这是应用的启动文件，负责：
1. 创建 FastAPI 应用实例，并在 lifespan 中创建/销毁进程级资源（管理后台缓存及其清理任务）
2. 配置全局中间件（CORS、Sentry）
3. 注册全局异常处理器
4. 注册 API 路由

运行方式：
    uvicorn skiniq.main:app --reload  # 开发模式
    fastapi dev skiniq/main.py  # 或使用 FastAPI CLI
"""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from skiniq.api.errors import AppError, upstream_failure
from skiniq.api.main import api_router
from skiniq.core.admin_cache import AdminCache, AdminCacheSweeper
from skiniq.core.config import settings

logger = logging.getLogger(__name__)


def custom_generate_unique_id(route: APIRoute) -> str:
    """
    自定义 OpenAPI 操作 ID 生成函数

    格式：{tag}-{route_name}，例如 "payments-webhook"
    """
    return f"{route.tags[0]}-{route.name}"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    应用生命周期

    管理后台缓存是进程内的：每个进程启动时创建一个空缓存，
    并用 APScheduler 定期清理过期条目，关闭时停止调度器。
    """
    cache = AdminCache(default_ttl=settings.ADMIN_CACHE_DEFAULT_TTL_SECONDS)
    sweeper = AdminCacheSweeper(cache, interval=settings.ADMIN_CACHE_SWEEP_INTERVAL_SECONDS)
    app.state.admin_cache = cache
    app.state.admin_cache_sweeper = sweeper
    sweeper.start()
    try:
        yield
    finally:
        sweeper.stop()
        cache.clear()


# 初始化 Sentry 错误监控（仅在非本地环境）
if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":  # pragma: no cover
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    generate_unique_id_function=custom_generate_unique_id,
    lifespan=lifespan,
)


@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    """业务异常 -> {"code", "message", "data": null}"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message, "data": None},
    )


@app.exception_handler(HTTPException)
async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """
    HTTP 异常处理器

    支持两种格式的 detail：
    1. 字典格式：{"code": 123, "message": "错误消息"}
    2. 字符串格式：自动生成错误码（状态码 * 1000）
    """
    payload: dict[str, Any]
    if isinstance(exc.detail, dict) and {"code", "message"} <= set(exc.detail.keys()):
        payload = {"code": exc.detail.get("code"), "message": exc.detail.get("message")}
    else:
        payload = {"code": exc.status_code * 1000, "message": str(exc.detail)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": payload["code"], "message": payload["message"], "data": None},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """
    请求参数校验失败（字段类型错误、必填字段缺失等）

    与业务校验失败一样返回 400；message 指出第一个出错的字段，data.errors 带完整列表
    """
    errors = jsonable_errors(exc)
    return JSONResponse(
        status_code=400,
        content={
            "code": 400000,
            "message": validation_message(errors),
            "data": {"errors": errors},
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    # ctx 中可能带有异常对象，不能直接序列化
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


def validation_message(errors: list[dict[str, Any]]) -> str:
    if not errors:
        return "Validation error"
    first = errors[0]
    # loc 第一段是参数来源（body / query / header / path）
    loc = [str(part) for part in first.get("loc", ())]
    if loc and loc[0] in {"body", "query", "header", "path", "cookie"}:
        loc = loc[1:]
    msg = first.get("msg") or "Invalid value"
    return f"{'.'.join(loc)}: {msg}" if loc else msg


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """未处理的异常：细节只写日志，对外返回通用的 500"""
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return await app_error_handler(request, upstream_failure())


# 配置 CORS（跨域资源共享）中间件
# 管理后台依赖 cookie 鉴权，必须 allow_credentials
if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# 所有路由都会添加 /api/v1 前缀
app.include_router(api_router, prefix=settings.API_V1_STR)
