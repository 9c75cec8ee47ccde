"""Integration Tests: TemplateEngine - generate() pipeline, loaders, registration.

Invariants:
    - Failed results never carry partial output
    - Unresolved placeholders fail generation in both strict and lenient mode
    - Strict mode stops at the first stage reporting an ERROR; lenient mode runs all stages
    - A loader miss surfaces as the sole error of a FAILED result
    - generate() is idempotent for identical template and bindings

Design Decisions:
    - Slow loaders use asyncio.sleep so timeouts are exercised without real I/O
"""

import asyncio

import pytest

from pulse_templates.engines import CacheConfig, EngineConfig, TemplateCache, TemplateEngine
from pulse_templates.errors import ContentError, LoaderError, StructuralError
from pulse_templates.loaders import MemoryTemplateLoader, TemplateLoader
from pulse_templates.models import (
    GenerateOptions,
    GenerationState,
    LoadOptions,
    QualityTier,
    Template,
    TemplateFilter,
    TemplateLanguage,
    TemplateType,
    VariableType,
)


class SlowLoader(TemplateLoader):
    """Reports every template as present but takes `delay` seconds to load it."""

    def __init__(self, template, delay=1.0, error=None):
        self.template = template
        self.delay = delay
        self.error = error

    async def load(self, template_id, options=None):
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.template.clone()

    async def save(self, template):
        pass

    async def delete(self, template_id):
        pass

    async def list(self, flt=None):
        return [self.template.id]

    async def exists(self, template_id):
        return template_id == self.template.id


# -- Scenarios -------------------------------------------------------------------

async def test_default_literal_scenario(engine, make_template):
    await engine.register_template(make_template("greeting", "Hello {{name|default:Guest}}!"))
    result = await engine.generate("greeting", {})
    assert result.success is True
    assert result.output == "Hello Guest!"
    assert result.state == GenerationState.DONE
    assert result.quality == QualityTier.HIGH
    assert result.errors == []
    assert result.generation_time_ms >= 0


async def test_uppercase_scenario(engine, make_template):
    await engine.register_template(make_template("upper", "{{value|uppercase}}"))
    result = await engine.generate("upper", {"value": "test"})
    assert result.output == "TEST"


async def test_nested_scenario(engine, make_template):
    await engine.register_template(make_template("city", "{{user.profile.city}}"))
    result = await engine.generate("city", {"user": {"profile": {"city": "NYC"}}})
    assert result.output == "NYC"


async def test_unresolved_placeholder_fails_in_lenient_mode(engine, make_template):
    template = make_template("missing", "{{missing}}")
    assert engine.compile_template(template, {}) == "{{missing}}"

    await engine.register_template(template)
    result = await engine.generate("missing", {}, GenerateOptions(strict=False))
    assert result.success is False
    assert result.output is None
    assert result.state == GenerationState.FAILED
    assert result.quality == QualityTier.FAILED
    assert any("{{missing}}" in e for e in result.errors)


async def test_strict_mode_fails_fast_on_unresolved_expression(engine, make_template):
    await engine.register_template(make_template("missing", "value: {{missing}}"))
    result = await engine.generate("missing", {}, GenerateOptions(strict=True))
    assert result.success is False
    assert result.output is None
    assert result.state == GenerationState.FAILED
    assert any("missing" in e for e in result.errors)


# -- Strict vs lenient -----------------------------------------------------------

async def test_strict_stops_at_completeness(engine, make_template, required_var):
    template = make_template("dated", "Date: {{date|default:today}}", variables=[required_var("date")])
    await engine.register_template(template)

    result = await engine.generate("dated", {}, GenerateOptions(strict=True))
    assert result.state == GenerationState.FAILED
    assert result.errors == ["Missing required variable: date"]
    assert result.output is None


async def test_lenient_runs_all_stages_and_reports_errors(engine, make_template, required_var):
    template = make_template("dated", "Date: {{date|default:today}}", variables=[required_var("date")])
    await engine.register_template(template)

    result = await engine.generate("dated", {}, GenerateOptions(strict=False))
    assert result.state == GenerationState.DONE
    assert result.success is False
    assert result.output is None
    assert result.errors == ["Missing required variable: date"]
    assert result.quality_score == 85
    assert result.quality == QualityTier.HIGH


async def test_structural_errors_from_loader(engine, memory_loader, make_template):
    await memory_loader.save(make_template("broken", "Some content here", template_type=None))

    lenient = await engine.generate("broken", {}, GenerateOptions(strict=False))
    assert lenient.success is False
    assert lenient.state == GenerationState.DONE
    assert "Missing template type in configuration" in lenient.errors
    assert not engine.cache.has("broken")

    strict = await engine.generate("broken", {}, GenerateOptions(strict=True))
    assert strict.state == GenerationState.FAILED
    assert strict.errors == ["Missing template type in configuration"]


async def test_warnings_are_reported(engine, make_template):
    await engine.register_template(make_template("short", "Hi {{name}}"))
    result = await engine.generate("short", {"name": ""})
    assert result.success is True
    assert result.output == "Hi "
    assert "Variable name has empty value" in result.warnings
    assert "Output is too short: 3 characters" in result.warnings


# -- Content and variable hygiene ------------------------------------------------

TABBED = "Hello\t{{name}}   \r\nline\n"


async def test_content_issues_are_warnings_in_lenient_mode(engine, make_template):
    await engine.register_template(make_template("tabbed", TABBED))
    result = await engine.generate("tabbed", {"name": "x"}, GenerateOptions(strict=False))
    assert result.success is True
    assert "Found 1 tab characters" in result.warnings
    assert "Found 1 lines with trailing spaces" in result.warnings
    assert "Mixed line endings (CRLF and LF) found in template" in result.warnings


async def test_content_issues_are_fatal_in_strict_mode(engine, make_template):
    await engine.register_template(make_template("tabbed", TABBED))
    result = await engine.generate("tabbed", {"name": "x"}, GenerateOptions(strict=True))
    assert result.success is False
    assert result.output is None
    assert result.state == GenerationState.FAILED
    assert "Found 1 tab characters" in result.errors


async def test_content_checked_on_cache_hit(engine, memory_loader, make_template):
    await memory_loader.save(make_template("tabbed", TABBED))
    await engine.generate("tabbed", {"name": "x"})
    result = await engine.generate("tabbed", {"name": "x"})
    assert engine.cache.stats().hit_count == 1
    assert "Found 1 tab characters" in result.warnings


async def test_load_template_rejects_content_issues_in_strict_mode(make_template):
    eng = TemplateEngine(config=EngineConfig(strict_mode=True))
    eng.register_loader("memory", MemoryTemplateLoader([make_template("tabbed", TABBED)]))
    with pytest.raises(ContentError) as exc:
        await eng.load_template("tabbed")
    assert all(r.is_error for r in exc.value.results)


async def test_unused_binding_is_a_warning(engine, make_template):
    await engine.register_template(make_template("greet", "Hello {{name}}!"))
    result = await engine.generate("greet", {"name": "x", "stray": 1})
    assert result.success is True
    assert 'Variable "stray" is provided but not used in template' in result.warnings


async def test_unresolved_expression_reported_before_compiling(engine, make_template):
    await engine.register_template(make_template("missing", "value: {{missing}}"))
    result = await engine.generate("missing", {}, GenerateOptions(strict=True))
    assert result.errors == ["Missing variable: missing"]


# -- Loading ---------------------------------------------------------------------

async def test_loader_miss_is_sole_error(engine):
    result = await engine.generate("nope", {})
    assert result.success is False
    assert result.state == GenerationState.FAILED
    assert len(result.errors) == 1
    assert "nope" in result.errors[0]


async def test_load_through_loader_then_cache(engine, memory_loader, make_template):
    await memory_loader.save(make_template("a"))
    first = await engine.generate("a", {"name": "Ann"})
    second = await engine.generate("a", {"name": "Ann"})
    assert first.output == second.output == "Hello Ann!"
    assert engine.cache.stats().hit_count == 1


async def test_cache_can_be_bypassed(engine, memory_loader, make_template):
    await memory_loader.save(make_template("a"))
    await engine.generate("a", {}, GenerateOptions(use_cache=False))
    assert not engine.cache.has("a")


async def test_engine_with_cache_disabled(memory_loader, make_template):
    eng = TemplateEngine(config=EngineConfig(cache_enabled=False))
    eng.register_loader("memory", memory_loader)
    await memory_loader.save(make_template("a"))
    assert (await eng.generate("a", {})).success
    assert len(eng.cache) == 0


async def test_loader_priority(engine, make_template):
    backup = MemoryTemplateLoader([make_template("a", "backup {{x|default:1}}")])
    primary = MemoryTemplateLoader([make_template("a", "primary {{x|default:1}}")])
    engine.register_loader("backup", backup, priority=1)
    engine.register_loader("primary", primary, priority=100)
    result = await engine.generate("a", {}, GenerateOptions(use_cache=False))
    assert result.output == "primary 1"


async def test_unregister_loader(engine, make_template):
    engine.register_loader("extra", MemoryTemplateLoader([make_template("x")]))
    assert engine.unregister_loader("extra") is True
    assert engine.unregister_loader("extra") is False
    assert (await engine.generate("x", {})).state == GenerationState.FAILED


async def test_loader_timeout_in_generate(engine, make_template):
    engine.register_loader("slow", SlowLoader(make_template("slow"), delay=1.0))
    result = await engine.generate("slow", {}, GenerateOptions(timeout=0.05))
    assert result.success is False
    assert result.state == GenerationState.FAILED
    assert "timed out" in result.errors[0]


async def test_loader_timeout_in_load_template(engine, make_template):
    engine.register_loader("slow", SlowLoader(make_template("slow"), delay=1.0))
    with pytest.raises(LoaderError):
        await engine.load_template("slow", LoadOptions(timeout=0.05))


async def test_loader_failure_is_wrapped(engine, make_template):
    engine.register_loader("bad", SlowLoader(make_template("bad"), delay=0, error=OSError("boom")))
    with pytest.raises(LoaderError) as exc:
        await engine.load_template("bad")
    assert "boom" in exc.value.message


async def test_load_template_checks_structure(engine, memory_loader, make_template):
    await memory_loader.save(make_template("broken", "Some content here", template_type=None))
    with pytest.raises(StructuralError):
        await engine.load_template("broken")
    template = await engine.load_template("broken", LoadOptions(validate=False, cache=False))
    assert template.id == "broken"


async def test_load_template_options_must_match(engine, memory_loader, make_template):
    await memory_loader.save(make_template("a", language=TemplateLanguage.EN, version="1.0.0"))
    assert (await engine.load_template("a", LoadOptions(language=TemplateLanguage.EN))).id == "a"
    with pytest.raises(LoaderError):
        await engine.load_template("a", LoadOptions(version="2.0.0"))


async def test_concurrent_generates_for_same_id(engine, memory_loader, make_template):
    await memory_loader.save(make_template("a"))
    results = await asyncio.gather(*(engine.generate("a", {"name": str(i)}) for i in range(10)))
    assert [r.output for r in results] == [f"Hello {i}!" for i in range(10)]


# -- Defaults --------------------------------------------------------------------

async def test_declared_defaults_fill_missing_bindings(engine, make_template, required_var):
    template = make_template(
        "defaults", "{{greeting}} world",
        variables=[required_var("greeting", required=False, default="Hi")],
    )
    await engine.register_template(template)

    assert (await engine.generate("defaults", {})).output == "Hi world"
    disabled = await engine.generate("defaults", {}, GenerateOptions(apply_defaults=False))
    assert disabled.success is False


# -- Registration ----------------------------------------------------------------

async def test_register_refuses_structural_errors(engine):
    with pytest.raises(StructuralError):
        await engine.register_template(Template(content="no metadata"))


async def test_register_stores_copy_and_persists(engine, memory_loader, make_template):
    template = make_template("a")
    await engine.register_template(template)
    template.content = "mutated"

    assert await memory_loader.exists("a")
    assert (await engine.generate("a", {})).output == "Hello Guest!"


async def test_unregister_template(engine, memory_loader, make_template):
    await engine.register_template(make_template("a"))
    assert await engine.unregister_template("a") is True
    assert await engine.unregister_template("a") is False
    assert not engine.cache.has("a")
    assert not await memory_loader.exists("a")
    assert (await engine.generate("a", {})).success is False


async def test_list_templates_filters_registered(engine, make_template):
    await engine.register_template(make_template("d1", template_type=TemplateType.DAILY, version="1.0.0"))
    await engine.register_template(make_template("d2", template_type=TemplateType.DAILY, version="2.1.0"))
    await engine.register_template(make_template("b1", template_type=TemplateType.BRIEF, tags=("quick",)))

    daily = await engine.list_templates(TemplateFilter(type=TemplateType.DAILY))
    assert sorted(t.id for t in daily) == ["d1", "d2"]
    newer = await engine.list_templates(TemplateFilter(version_min="2.0.0"))
    assert [t.id for t in newer] == ["d2"]
    tagged = await engine.list_templates(TemplateFilter(tags=["quick"]))
    assert [t.id for t in tagged] == ["b1"]
    assert len(await engine.list_templates()) == 3


async def test_list_templates_falls_back_to_loaders(make_template, clock):
    eng = TemplateEngine(cache=TemplateCache(CacheConfig(cleanup_interval=0), clock=clock))
    eng.register_loader("memory", MemoryTemplateLoader([
        make_template("x", template_type=TemplateType.DAILY),
        make_template("y", template_type=TemplateType.BRIEF),
    ]))
    found = await eng.list_templates(TemplateFilter(type=TemplateType.BRIEF))
    assert [t.id for t in found] == ["y"]


async def test_get_template_info(engine, make_template):
    await engine.register_template(make_template("a", version="3.2.1"))
    info = engine.get_template_info("a")
    assert info.version == "3.2.1"
    info.version = "9.9.9"
    assert engine.get_template_info("a").version == "3.2.1"
    assert engine.get_template_info("unknown") is None


async def test_get_template_info_leaves_cache_stats_alone(engine, memory_loader, make_template):
    await memory_loader.save(make_template("a", version="2.0.0"))
    await engine.generate("a", {})
    before = engine.cache.stats()
    assert engine.get_template_info("a").version == "2.0.0"
    assert engine.cache.stats() == before


def test_validate_template(engine, make_template):
    assert engine.validate_template(make_template()) == []
    assert engine.validate_template(Template())


# -- Properties ------------------------------------------------------------------

async def test_generate_is_idempotent(engine, make_template, required_var):
    template = make_template(
        "idem", "Report for {{date|date}}: {{count|number}} items, {{tags}}",
        variables=[required_var("date", VariableType.DATE), required_var("count", VariableType.NUMBER)],
    )
    await engine.register_template(template)
    bindings = {"date": "2024-02-03", "count": 1200, "tags": ["a", "b"]}

    first = await engine.generate("idem", bindings)
    second = await engine.generate("idem", bindings)
    assert first.output == second.output == "Report for 2024-02-03: 1,200 items, a, b"
    assert first.quality == second.quality
    assert bindings == {"date": "2024-02-03", "count": 1200, "tags": ["a", "b"]}
    assert engine.get_template_info("idem") is not None


async def test_async_context_manager_closes_cache():
    async with TemplateEngine(
        cache=TemplateCache(CacheConfig(cleanup_interval=60))
    ) as eng:
        assert eng.cache._cleanup_thread is not None
    assert eng.cache._cleanup_thread is None
