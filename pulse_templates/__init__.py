"""
Z-Pulse 摘要模板引擎
"""
from .definitions import TemplateRegistry, builtin_registry, seed_loader
from .engines import (
    CacheConfig,
    EngineConfig,
    EvaluatorConfig,
    EvictionPolicy,
    ExpressionEvaluator,
    TemplateCache,
    TemplateEngine,
    TemplateValidator,
    ValidatorConfig,
)
from .errors import (
    ContentError,
    LoaderError,
    OutputError,
    StructuralError,
    TemplateError,
    VariableError,
)
from .loaders import CompositeTemplateLoader, LoaderInfo, MemoryTemplateLoader, TemplateLoader
from .models import (
    GenerateOptions,
    GenerationResult,
    GenerationState,
    LoadOptions,
    QualityTier,
    Template,
    TemplateConfig,
    TemplateFilter,
    TemplateFormat,
    TemplateLanguage,
    TemplateMetadata,
    TemplateSection,
    TemplateType,
    ValidationResult,
    VariableDefinition,
    VariableType,
)

__version__ = "1.0.0"

__all__ = [
    "TemplateRegistry",
    "builtin_registry",
    "seed_loader",
    "CacheConfig",
    "EngineConfig",
    "EvaluatorConfig",
    "EvictionPolicy",
    "ExpressionEvaluator",
    "TemplateCache",
    "TemplateEngine",
    "TemplateValidator",
    "ValidatorConfig",
    "ContentError",
    "LoaderError",
    "OutputError",
    "StructuralError",
    "TemplateError",
    "VariableError",
    "CompositeTemplateLoader",
    "LoaderInfo",
    "MemoryTemplateLoader",
    "TemplateLoader",
    "GenerateOptions",
    "GenerationResult",
    "GenerationState",
    "LoadOptions",
    "QualityTier",
    "Template",
    "TemplateConfig",
    "TemplateFilter",
    "TemplateFormat",
    "TemplateLanguage",
    "TemplateMetadata",
    "TemplateSection",
    "TemplateType",
    "ValidationResult",
    "VariableDefinition",
    "VariableType",
]
