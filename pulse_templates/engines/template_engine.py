"""
模板引擎

generate() 流水线：
    LOADING -> VALIDATING_STRUCTURE -> VALIDATING_VARIABLES -> COMPLETENESS_CHECK
    -> COMPILING -> VALIDATING_OUTPUT -> SCORING -> DONE | FAILED

- 缓存命中跳过结构校验（写入缓存前已做过），内容校验每次都执行
- 严格模式下内容问题（长度、格式）升级为错误
- 严格模式：任一阶段出现 ERROR 立即失败，不再编译
- 非严格模式：所有阶段都执行，最后统一报告错误
- 输出中残留占位符总是致命错误，与严格模式无关
- 失败的结果不包含任何部分输出
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..config import settings
from ..errors import ContentError, LoaderError, OutputError, StructuralError, TemplateError, VariableError
from ..loaders import CompositeTemplateLoader, TemplateLoader, matches_id_filter
from ..models import (
    Bindings,
    GenerateOptions,
    GenerationResult,
    GenerationState,
    LoadOptions,
    QualityTier,
    Template,
    TemplateFilter,
    TemplateMetadata,
    ValidationResult,
    ValidationSeverity,
    matches_filter,
)
from ..utils import get_logger
from .cache import CacheConfig, TemplateCache
from .expression import EvaluatorConfig, ExpressionEvaluator
from .validation import (
    UNRESOLVED_PLACEHOLDER_CONDITION,
    TemplateValidator,
    ValidatorConfig,
    quality_tier,
)

logger = get_logger("template-engine")


@dataclass(frozen=True)
class EngineConfig:
    cache_enabled: bool = True
    cache_ttl: Optional[float] = None  # None 表示使用缓存的默认 TTL
    validation_enabled: bool = True
    strict_mode: bool = False
    loader_timeout: Optional[float] = 30.0  # 秒；None 表示不限时

    @classmethod
    def from_settings(cls) -> "EngineConfig":
        return cls(
            cache_enabled=settings.CACHE_ENABLED,
            cache_ttl=settings.CACHE_TTL_SECONDS,
            validation_enabled=settings.VALIDATION_ENABLED,
            strict_mode=settings.STRICT_MODE,
            loader_timeout=settings.LOADER_TIMEOUT_SECONDS,
        )


def _errors(results: List[ValidationResult]) -> List[ValidationResult]:
    return [r for r in results if r.is_error]


def _as_error(result: ValidationResult) -> ValidationResult:
    rule = result.rule.model_copy(update={"severity": ValidationSeverity.ERROR})
    return result.model_copy(update={"rule": rule})


def _messages(results: List[ValidationResult], errors: bool) -> List[str]:
    picked = [r for r in results if (r.is_error if errors else r.is_warning)]
    return [r.message or r.rule.message for r in picked]


class TemplateEngine:
    """
    摘要模板引擎

    协作者（表达式引擎、验证引擎、缓存、加载器）全部通过构造函数注入，
    省略时使用默认配置创建。
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
        validator: Optional[TemplateValidator] = None,
        cache: Optional[TemplateCache] = None,
        loaders: Optional[CompositeTemplateLoader] = None,
    ):
        self.config = config or EngineConfig()
        self.evaluator = evaluator or ExpressionEvaluator(EvaluatorConfig(strict_mode=self.config.strict_mode))
        self.validator = validator or TemplateValidator()
        self.cache = cache or TemplateCache()
        self.loaders = loaders or CompositeTemplateLoader()
        self._templates: Dict[str, Template] = {}

    @classmethod
    def from_settings(cls) -> "TemplateEngine":
        """按全局配置创建引擎"""
        return cls(
            config=EngineConfig.from_settings(),
            evaluator=ExpressionEvaluator(EvaluatorConfig.from_settings()),
            validator=TemplateValidator(ValidatorConfig.from_settings()),
            cache=TemplateCache(CacheConfig.from_settings()),
        )

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------
    def start(self) -> None:
        """启动缓存定时清理"""
        if self.config.cache_enabled:
            self.cache.start()

    def close(self) -> None:
        self.cache.close()

    async def __aenter__(self) -> "TemplateEngine":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # 加载器管理
    # ------------------------------------------------------------------
    def register_loader(self, name: str, loader: TemplateLoader, priority: int = 0) -> None:
        self.loaders.add_loader(loader, priority=priority, name=name)
        logger.info(f"Registered loader {name} (priority={priority})")

    def unregister_loader(self, name: str) -> bool:
        removed = self.loaders.remove_loader(name)
        if removed:
            logger.info(f"Unregistered loader {name}")
        return removed

    # ------------------------------------------------------------------
    # 模板管理
    # ------------------------------------------------------------------
    async def load_template(self, template_id: str, options: Optional[LoadOptions] = None) -> Template:
        """
        加载模板：缓存 -> 已注册模板 -> 加载器（按优先级）

        Raises:
            LoaderError: 所有加载器中都找不到、加载超时，或与 version/language/type 选项不符
            StructuralError: 模板存在结构错误
            ContentError: 严格模式下模板存在内容问题
        """
        options = options or LoadOptions()
        use_cache = self.config.cache_enabled if options.cache is None else options.cache
        validate = self.config.validation_enabled if options.validate is None else options.validate

        template, verified = await self._fetch(template_id, options, use_cache)

        wanted = TemplateFilter(type=options.type, language=options.language, version=options.version)
        if not matches_filter(template, wanted):
            raise LoaderError(
                f"Template {template_id} does not match requested version/language/type",
                template_id=template_id,
            )

        if not verified:
            if validate:
                structural = _errors(self.validator.validate_structure(template))
                if structural:
                    raise StructuralError(
                        f"Template {template_id} has structural errors: {structural[0].message}",
                        results=structural,
                    )
                content = self.validator.validate_content(template)
                if content and self.config.strict_mode:
                    raise ContentError(
                        f"Template {template_id} has content issues: {content[0].message}",
                        results=[_as_error(r) for r in content],
                    )
                for r in content:
                    logger.warning(f"Template {template_id}: {r.message}")
            if use_cache:
                self.cache.set(template_id, template, self.config.cache_ttl)
        return template

    def validate_template(self, template: Template) -> List[ValidationResult]:
        """结构 + 内容 + 变量定义"""
        return self.validator.validate_template(template)

    def compile_template(
        self, template: Template, bindings: Optional[Bindings] = None, *, strict: Optional[bool] = None
    ) -> str:
        """
        编译模板

        Raises:
            VariableError: 严格模式下存在无法解析的表达式
        """
        strict = self.config.strict_mode if strict is None else strict
        return self.evaluator.replace(template.content or "", bindings or {}, strict=strict)

    async def register_template(self, template: Template) -> None:
        """
        注册模板：结构校验 -> 保存副本 -> 写入缓存 -> 分发到所有加载器

        Raises:
            StructuralError: 模板存在结构错误
        """
        structural = _errors(self.validator.validate_structure(template))
        if structural or not template.id:
            message = structural[0].message if structural else "Missing template metadata"
            raise StructuralError(f"Cannot register template: {message}", results=structural)

        stored = template.clone()
        self._templates[stored.id] = stored
        if self.config.cache_enabled:
            self.cache.set(stored.id, stored, self.config.cache_ttl)
        await self.loaders.save(stored)
        logger.info(f"Registered template {stored.id} (version {stored.metadata.version})")

    async def unregister_template(self, template_id: str) -> bool:
        removed = self._templates.pop(template_id, None) is not None
        self.cache.delete(template_id)
        await self.loaders.delete(template_id)
        if removed:
            logger.info(f"Unregistered template {template_id}")
        return removed

    async def list_templates(self, flt: Optional[TemplateFilter] = None) -> List[Template]:
        """
        列出匹配过滤器的模板；已注册模板中没有匹配项时回退到加载器
        """
        matched = [
            t.clone() for t in self._templates.values()
            if matches_id_filter(t.id, flt) and matches_filter(t, flt)
        ]
        if matched or not len(self.loaders):
            return matched

        for template_id in await self.loaders.list(flt):
            try:
                template = await self.loaders.load(template_id)
            except TemplateError as e:
                logger.warning(f"Skipping template {template_id} while listing: {e.message}")
                continue
            if matches_filter(template, flt):
                matched.append(template)
        return matched

    def get_template_info(self, template_id: str) -> Optional[TemplateMetadata]:
        template = self._templates.get(template_id)
        if template is None:
            template = self.cache.peek(template_id)
        if template is None or template.metadata is None:
            return None
        return template.metadata.model_copy(deep=True)

    # ------------------------------------------------------------------
    # 生成
    # ------------------------------------------------------------------
    async def generate(
        self,
        template_id: str,
        bindings: Optional[Bindings] = None,
        options: Optional[GenerateOptions] = None,
    ) -> GenerationResult:
        """
        使用模板生成摘要

        模板问题不会抛出异常，而是转换为 success=False 的结果。
        """
        options = options or GenerateOptions()
        strict = self.config.strict_mode if options.strict is None else options.strict
        use_cache = self.config.cache_enabled if options.use_cache is None else options.use_cache
        validate = self.config.validation_enabled
        bindings = dict(bindings or {})

        started = time.perf_counter()
        results: List[ValidationResult] = []
        state = GenerationState.LOADING
        template: Optional[Template] = None

        def elapsed_ms() -> float:
            return (time.perf_counter() - started) * 1000

        try:
            template, verified = await self._fetch(template_id, LoadOptions(timeout=options.timeout), use_cache)

            state = GenerationState.VALIDATING_STRUCTURE
            if not verified:
                structural = self.validator.validate_structure(template) if validate else []
                results.extend(structural)
                if strict and _errors(structural):
                    raise StructuralError(f"Template {template_id} has structural errors", results=_errors(structural))
                if use_cache and not _errors(structural):
                    self.cache.set(template_id, template, self.config.cache_ttl)

            content_results = self.validator.validate_content(template) if validate else []
            if strict:
                # 严格模式下内容问题升级为错误
                content_results = [_as_error(r) for r in content_results]
            results.extend(content_results)
            if content_results and strict:
                raise ContentError(f"Template {template_id} has content issues", results=content_results)

            state = GenerationState.VALIDATING_VARIABLES
            render_bindings = self._with_defaults(template, bindings) if options.apply_defaults else bindings
            variable_results: List[ValidationResult] = []
            if validate:
                variable_results.extend(self.validator.validate_variables(template, bindings))
                variable_results.extend(self.evaluator.validate(template.content or "", render_bindings))
            results.extend(variable_results)
            if strict and _errors(variable_results):
                raise VariableError(f"Template {template_id} has variable errors", results=_errors(variable_results))

            state = GenerationState.COMPLETENESS_CHECK
            completeness = self.validator.check_completeness(template, bindings) if validate else []
            results.extend(completeness)
            if strict and _errors(completeness):
                raise VariableError(f"Template {template_id} is incomplete", results=_errors(completeness))

            state = GenerationState.COMPILING
            output = self.compile_template(template, render_bindings, strict=strict)

            state = GenerationState.VALIDATING_OUTPUT
            output_results = self.validator.validate_output(output, template)
            results.extend(output_results)
            unresolved = [r for r in output_results if r.rule.condition == UNRESOLVED_PLACEHOLDER_CONDITION]
            if unresolved:
                raise OutputError(unresolved[0].message, results=unresolved)
            if strict and _errors(output_results):
                raise OutputError(f"Template {template_id} produced invalid output", results=_errors(output_results))

            state = GenerationState.SCORING
            score = self.validator.calculate_quality_score(template, bindings)
            errors = _messages(results, errors=True)
            success = not errors

        except TemplateError as e:
            errors = _messages(results, errors=True)
            if not e.results:
                errors.append(e.message)
            logger.warning(f"Generation of {template_id} failed at {state.value}: {e.message}")
            return GenerationResult(
                success=False,
                template=template,
                output=None,
                errors=errors,
                warnings=_messages(results, errors=False),
                validation_results=results,
                generation_time_ms=elapsed_ms(),
                quality=QualityTier.FAILED,
                quality_score=0,
                state=GenerationState.FAILED,
            )

        result = GenerationResult(
            success=success,
            template=template,
            output=output if success else None,
            errors=errors,
            warnings=_messages(results, errors=False),
            validation_results=results,
            generation_time_ms=elapsed_ms(),
            quality=quality_tier(score),
            quality_score=score,
            state=GenerationState.DONE,
        )
        if success:
            logger.info(
                f"Generated {template_id} in {result.generation_time_ms:.1f}ms "
                f"(quality={result.quality.value}, score={score})"
            )
        else:
            logger.warning(f"Generated {template_id} with {len(errors)} errors: {errors[:3]}")
        return result

    # ------------------------------------------------------------------
    # 内部实现
    # ------------------------------------------------------------------
    async def _fetch(self, template_id: str, options: LoadOptions, use_cache: bool) -> Tuple[Template, bool]:
        """
        Returns:
            (模板副本, 是否已通过结构校验)
        """
        if use_cache:
            cached = self.cache.get(template_id)
            if cached is not None:
                return cached, True

        stored = self._templates.get(template_id)
        if stored is not None:
            return stored.clone(), True

        timeout = self.config.loader_timeout if options.timeout is None else options.timeout
        try:
            template = await asyncio.wait_for(self.loaders.load(template_id, options), timeout)
        except LoaderError:
            raise
        except asyncio.TimeoutError as e:
            raise LoaderError(
                f"Loading template {template_id} timed out after {timeout}s", template_id=template_id
            ) from e
        except Exception as e:
            logger.error(f"Loader failed for template {template_id}: {e}")
            raise LoaderError(f"Failed to load template {template_id}: {e}", template_id=template_id) from e
        return template, False

    def _with_defaults(self, template: Template, bindings: Dict[str, Any]) -> Dict[str, Any]:
        """声明的默认值只在编译时补齐缺失变量"""
        if template.config is None:
            return bindings
        merged = dict(bindings)
        for definition in template.config.variables:
            if definition.name and definition.name not in merged and definition.default is not None:
                merged[definition.name] = definition.default
        return merged
