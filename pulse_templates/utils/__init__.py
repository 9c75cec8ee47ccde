"""
工具函数模块
"""
from .logger import get_logger

__all__ = ["get_logger"]
