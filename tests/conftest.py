"""Root conftest - shared fixtures for the template engine tests."""

import os

# Keep test output quiet
os.environ.setdefault("PULSE_LOG_LEVEL", "WARNING")

import pytest

from pulse_templates.engines import (
    CacheConfig,
    EngineConfig,
    EvictionPolicy,
    ExpressionEvaluator,
    TemplateCache,
    TemplateEngine,
    TemplateValidator,
)
from pulse_templates.loaders import MemoryTemplateLoader
from pulse_templates.models import (
    Template,
    TemplateConfig,
    TemplateFormat,
    TemplateLanguage,
    TemplateMetadata,
    TemplateSection,
    TemplateType,
    VariableDefinition,
    VariableType,
)


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def build_template(
    template_id="greeting",
    content="Hello {{name|default:Guest}}!",
    *,
    template_type=TemplateType.CUSTOM,
    language=TemplateLanguage.EN,
    fmt=TemplateFormat.PLAIN,
    sections=("header", "body", "footer"),
    variables=(),
    version="1.0.0",
    tags=(),
):
    return Template(
        metadata=TemplateMetadata(id=template_id, name=template_id.title(), version=version, tags=list(tags)),
        config=TemplateConfig(
            type=template_type,
            language=language,
            format=fmt,
            sections=[TemplateSection(id=s, name=s) for s in sections],
            variables=list(variables),
        ),
        content=content,
    )


@pytest.fixture
def make_template():
    return build_template


@pytest.fixture
def required_var():
    def _make(name, var_type=VariableType.STRING, required=True, **kwargs):
        return VariableDefinition(name=name, type=var_type, required=required, **kwargs)
    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def evaluator():
    return ExpressionEvaluator()


@pytest.fixture
def validator():
    return TemplateValidator()


@pytest.fixture
def cache(clock):
    return TemplateCache(CacheConfig(max_bytes=1024 * 1024, default_ttl=60, cleanup_interval=0), clock=clock)


@pytest.fixture
def lru_cache_factory(clock):
    def _make(max_bytes, policy=EvictionPolicy.LRU, ttl=60):
        return TemplateCache(
            CacheConfig(max_bytes=max_bytes, default_ttl=ttl, cleanup_interval=0, eviction_policy=policy),
            clock=clock,
        )
    return _make


@pytest.fixture
def memory_loader():
    return MemoryTemplateLoader()


@pytest.fixture
def engine(cache, memory_loader):
    eng = TemplateEngine(config=EngineConfig(loader_timeout=5.0), cache=cache)
    eng.register_loader("memory", memory_loader, priority=10)
    yield eng
    eng.close()
