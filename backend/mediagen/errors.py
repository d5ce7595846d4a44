"""
统一错误处理模块
提供错误类型枚举和AppException异常类
"""
from enum import Enum
from typing import Optional
from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    """应用错误码"""
    # 积分相关
    CREDITS_INSUFFICIENT = "CREDITS_INSUFFICIENT"
    RESERVATION_FAILED = "RESERVATION_FAILED"

    # 任务相关
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    TASK_TYPE_UNKNOWN = "TASK_TYPE_UNKNOWN"
    CONCURRENT_LIMIT = "CONCURRENT_LIMIT"

    # 素材相关
    ASSET_NOT_FOUND = "ASSET_NOT_FOUND"
    INVALID_FILE_FORMAT = "INVALID_FILE_FORMAT"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UPLOAD_FAILED = "UPLOAD_FAILED"

    # 支付相关
    PACKAGE_NOT_FOUND = "PACKAGE_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"

    # 验证相关
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FORBIDDEN = "FORBIDDEN"

    # 服务器相关
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # 网络相关
    NETWORK_ERROR = "NETWORK_ERROR"


class AppException(HTTPException):
    """应用自定义异常"""

    def __init__(
        self,
        status_code: int,
        error_code: ErrorCode | str,
        message: str,
        user_action: Optional[str] = None,
        details: Optional[dict] = None,
        retryable: bool = False,
    ):
        super().__init__(status_code=status_code, detail=message)
        self.error_code = error_code if isinstance(error_code, str) else error_code.value
        self.message = message
        self.user_action = user_action
        self.details = details
        self.retryable = retryable

    def to_dict(self) -> dict:
        """转换为字典响应"""
        return {
            "success": False,
            "error_code": self.error_code,
            "message": self.message,
            "user_action": self.user_action,
            "details": self.details,
            "retryable": self.retryable,
        }


# ============ 便捷错误创建函数 ============

def credits_insufficient_error(required: int, available: int) -> AppException:
    """积分不足错误"""
    return AppException(
        status_code=status.HTTP_400_BAD_REQUEST,
        error_code=ErrorCode.CREDITS_INSUFFICIENT,
        message=f"积分不足，需要 {required} 积分，当前可用 {available} 积分",
        user_action="请前往充值页面购买积分后重试",
        details={"required": required, "available": available}
    )


def reservation_failed_error(required: int) -> AppException:
    """扣费失败（余额在预检后被并发请求消耗）"""
    return AppException(
        status_code=status.HTTP_409_CONFLICT,
        error_code=ErrorCode.RESERVATION_FAILED,
        message=f"积分扣除失败，需要 {required} 积分",
        user_action="请刷新余额后重试",
        details={"required": required}
    )


def concurrent_limit_error(limit: int) -> AppException:
    """并发任务数已达上限"""
    return AppException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        error_code=ErrorCode.CONCURRENT_LIMIT,
        message="当前排队任务过多，请稍后再试",
        user_action="请等待片刻后重新提交",
        details={"max_concurrent": limit},
        retryable=True,
    )


def task_not_found_error(task_id: str) -> AppException:
    """任务不存在错误"""
    return AppException(
        status_code=status.HTTP_404_NOT_FOUND,
        error_code=ErrorCode.TASK_NOT_FOUND,
        message=f"任务 {task_id} 不存在或已被删除",
        user_action="请刷新页面后重试",
        details={"task_id": task_id}
    )


def unknown_task_type_error(task_type: str) -> AppException:
    return AppException(
        status_code=status.HTTP_404_NOT_FOUND,
        error_code=ErrorCode.TASK_TYPE_UNKNOWN,
        message=f"不支持的任务类型: {task_type}",
        details={"task_type": task_type}
    )


def asset_not_found_error(asset_id: str) -> AppException:
    return AppException(
        status_code=status.HTTP_404_NOT_FOUND,
        error_code=ErrorCode.ASSET_NOT_FOUND,
        message=f"素材 {asset_id} 不存在",
        details={"asset_id": asset_id}
    )


def forbidden_error(message: str = "无权访问该资源") -> AppException:
    return AppException(
        status_code=status.HTTP_403_FORBIDDEN,
        error_code=ErrorCode.FORBIDDEN,
        message=message,
    )


def invalid_file_format_error(content_type: str) -> AppException:
    """文件格式错误"""
    return AppException(
        status_code=status.HTTP_400_BAD_REQUEST,
        error_code=ErrorCode.INVALID_FILE_FORMAT,
        message=f"不支持的文件格式: {content_type}",
        user_action="请上传 JPG、PNG、GIF、WebP 图片或 MP4、MOV 视频",
        details={"content_type": content_type}
    )


def file_too_large_error(size_mb: float, max_mb: float) -> AppException:
    """文件过大错误"""
    return AppException(
        status_code=status.HTTP_400_BAD_REQUEST,
        error_code=ErrorCode.FILE_TOO_LARGE,
        message=f"文件大小({size_mb:.1f}MB)超过限制({max_mb}MB)",
        user_action=f"请上传小于 {max_mb}MB 的文件",
        details={"size_mb": size_mb, "max_mb": max_mb}
    )


def upload_failed_error(detail: str) -> AppException:
    return AppException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        error_code=ErrorCode.UPLOAD_FAILED,
        message=f"文件保存失败: {detail}",
        user_action="请稍后重试",
        retryable=True,
    )


def package_not_found_error(package_id: str) -> AppException:
    return AppException(
        status_code=status.HTTP_404_NOT_FOUND,
        error_code=ErrorCode.PACKAGE_NOT_FOUND,
        message=f"套餐 {package_id} 不存在",
        details={"package_id": package_id}
    )


def order_not_found_error(order_no: str) -> AppException:
    return AppException(
        status_code=status.HTTP_404_NOT_FOUND,
        error_code=ErrorCode.ORDER_NOT_FOUND,
        message=f"订单 {order_no} 不存在",
        details={"order_no": order_no}
    )


def network_error_error(detail: str = "网络连接失败") -> AppException:
    """网络错误"""
    return AppException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        error_code=ErrorCode.NETWORK_ERROR,
        message=detail,
        user_action="请检查网络连接后重试，如果问题持续存在，请稍后再试",
        retryable=True,
    )


def validation_error_error(message: str, details: Optional[dict] = None) -> AppException:
    """验证错误"""
    return AppException(
        status_code=status.HTTP_400_BAD_REQUEST,
        error_code=ErrorCode.VALIDATION_ERROR,
        message=message,
        user_action="请检查输入后重试",
        details=details
    )


def internal_error_error(detail: str = "服务内部错误") -> AppException:
    """内部错误"""
    return AppException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code=ErrorCode.INTERNAL_ERROR,
        message=detail,
        user_action="如果问题持续存在，请联系管理员",
    )
