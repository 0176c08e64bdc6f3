"""
API异常处理器
业务异常、请求校验错误、数据库错误统一转换为JSON响应
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from promotions.core.exceptions import BusinessException

logger = logging.getLogger(__name__)

__all__ = [
    "BusinessException",
    "business_exception_handler",
    "validation_exception_handler",
    "http_exception_handler",
    "database_exception_handler",
    "general_exception_handler",
]


async def business_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """业务异常"""
    if not isinstance(exc, BusinessException):
        return await general_exception_handler(request, exc)

    logger.info(f"业务异常 {request.method} {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": True,
            "code": exc.code,
            "message": exc.message,
            "status_code": exc.status_code,
        },
    )


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """请求参数校验错误"""
    errors = []
    if isinstance(exc, RequestValidationError):
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            })

    logger.warning(f"请求参数校验失败 {request.url.path}: {errors}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": True,
            "code": "VALIDATION_ERROR",
            "message": "请求参数校验失败",
            "details": errors,
            "status_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
        },
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """HTTP异常"""
    http_exc = exc if isinstance(exc, HTTPException) else HTTPException(status_code=500, detail=str(exc))
    return JSONResponse(
        status_code=http_exc.status_code,
        content={
            "error": True,
            "message": http_exc.detail,
            "status_code": http_exc.status_code,
        },
        headers=http_exc.headers,
    )


async def database_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """数据库错误：存储不可用时返回503，不暴露内部信息"""
    logger.error(f"数据库错误 {request.method} {request.url.path}: {exc!s}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": True,
            "code": "DATABASE_ERROR",
            "message": "存储服务暂时不可用，请稍后重试",
            "status_code": status.HTTP_503_SERVICE_UNAVAILABLE,
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """未处理的异常"""
    logger.error(f"未处理的异常 {request.method} {request.url.path}: {exc!s}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": True,
            "code": "INTERNAL_ERROR",
            "message": "服务器内部错误",
            "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
        },
    )
