"""
日志工具
"""
import sys
from pathlib import Path
from loguru import logger

from ..config import settings


def get_logger(name: str):
    """
    获取logger实例

    Args:
        name: logger名称

    Returns:
        绑定了name的logger实例
    """
    # 只在首次调用时配置 handler，避免多次 get_logger() 互相 remove 导致日志丢失
    if not getattr(get_logger, "_configured", False):
        logger.remove()

        if settings.LOG_FORMAT == "json":
            logger.add(
                sys.stderr,
                format="{time} | {level} | {name}:{function}:{line} | {message}",
                level=settings.LOG_LEVEL,
                serialize=True,
            )
        else:
            logger.add(
                sys.stderr,
                format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
                level=settings.LOG_LEVEL,
                colorize=True,
            )

        # 文件 handler：仅在配置了 LOG_DIR 时添加
        if settings.LOG_DIR:
            log_dir = Path(settings.LOG_DIR)
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.add(
                str(log_dir / "pulse-templates.log"),
                rotation="500 MB",
                retention="10 days",
                level=settings.LOG_LEVEL,
                compression="zip",
            )

        get_logger._configured = True

    return logger.bind(name=name)
