"""
模板引擎模块
"""
from .cache import CacheConfig, CacheItem, CacheStats, EvictionPolicy, TemplateCache
from .expression import EvaluatorConfig, Expression, ExpressionEvaluator, parse_expression
from .template_engine import EngineConfig, TemplateEngine
from .validation import TemplateValidator, ValidatorConfig, quality_tier

__all__ = [
    "CacheConfig",
    "CacheItem",
    "CacheStats",
    "EvictionPolicy",
    "TemplateCache",
    "EvaluatorConfig",
    "Expression",
    "ExpressionEvaluator",
    "parse_expression",
    "EngineConfig",
    "TemplateEngine",
    "TemplateValidator",
    "ValidatorConfig",
    "quality_tier",
]
