"""性能分析装饰器"""
import logging
import time
from functools import wraps
from typing import Callable, Any

logger = logging.getLogger(__name__)


def profile_endpoint(func: Callable) -> Callable:
    """
    性能分析装饰器，用于测量 API 端点的执行时间

    记录：
    - 端点名称
    - 总逻辑耗时（含 DB 与上游请求）
    """
    @wraps(func)
    async def wrapper(*args, **kwargs) -> Any:
        start_time = time.perf_counter()
        try:
            return await func(*args, **kwargs)
        finally:
            logger.debug(
                "⏱️ %s 耗时: %.4fs", func.__name__, time.perf_counter() - start_time
            )
    return wrapper
