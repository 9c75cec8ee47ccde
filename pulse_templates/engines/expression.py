"""
变量表达式引擎

占位符语法：
    {{name}}                  直接取值
    {{name|formatter}}        格式化（uppercase/lowercase/capitalize/date/time/
                              datetime/number/currency/percentage/date:<pattern>）
    {{name|default:literal}}  未解析时使用默认值
    {{a.b.c}} / {{arr[0]}}    嵌套访问

管道可以串联，从左到右执行：{{name|default:guest|uppercase}}
"""
from __future__ import annotations

import html
import json
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
from typing import Any, List, Mapping, Optional, Tuple

from ..config import settings
from ..errors import VariableError
from ..models import (
    Bindings,
    ValidationResult,
    ValidationRule,
    ValidationRuleType,
    ValidationSeverity,
)
from ..utils import get_logger

logger = get_logger("template-expression")


PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")

ESCAPE_HTML = "html"

DATE_PATTERNS = ("yyyy-mm-dd", "mm/dd/yyyy", "dd/mm/yyyy")

_PATH_TOKEN = re.compile(r"(?P<name>[^.\[\]\s]+)|\[(?P<index>\d+)\]|(?P<dot>\.)")

_MISSING = object()


@dataclass(frozen=True)
class PathSegment:
    key: Optional[str] = None
    index: Optional[int] = None


@dataclass(frozen=True)
class Pipe:
    name: str
    arg: Optional[str] = None

    @property
    def spec(self) -> str:
        return self.name if self.arg is None else f"{self.name}:{self.arg}"


@dataclass(frozen=True)
class Expression:
    """解析后的占位符表达式"""
    raw: str
    name: str
    path: Tuple[PathSegment, ...]
    pipes: Tuple[Pipe, ...] = ()

    @property
    def root(self) -> str:
        return self.path[0].key if self.path else self.name


def _strip_quotes(s: str) -> str:
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        return s[1:-1]
    return s


def _parse_path(name: str) -> Tuple[PathSegment, ...]:
    segments: List[PathSegment] = []
    pos = 0
    prev = "start"
    for m in _PATH_TOKEN.finditer(name):
        if m.start() != pos:
            raise VariableError(f"Invalid variable path: {name}", expression=name)
        pos = m.end()
        if m.group("name") is not None:
            if prev not in ("start", "dot"):
                raise VariableError(f"Invalid variable path: {name}", expression=name)
            segments.append(PathSegment(key=m.group("name")))
            prev = "name"
        elif m.group("index") is not None:
            if prev not in ("name", "index"):
                raise VariableError(f"Invalid variable path: {name}", expression=name)
            segments.append(PathSegment(index=int(m.group("index"))))
            prev = "index"
        else:
            if prev not in ("name", "index"):
                raise VariableError(f"Invalid variable path: {name}", expression=name)
            prev = "dot"
    if pos != len(name) or prev in ("start", "dot"):
        raise VariableError(f"Invalid variable path: {name}", expression=name)
    return tuple(segments)


@lru_cache(maxsize=1024)
def parse_expression(raw: str) -> Expression:
    """
    把占位符内部文本解析为 Expression

    Raises:
        VariableError: 表达式为空或路径不合法
    """
    text = (raw or "").strip()
    if not text:
        raise VariableError("Empty variable expression", expression=raw or "")

    head, _, rest = text.partition("|")
    name = head.strip()
    path = _parse_path(name)

    pipes: List[Pipe] = []
    if rest:
        for piece in rest.split("|"):
            piece = piece.strip()
            if not piece:
                raise VariableError(f"Empty pipe in expression: {text}", expression=text)
            pipe_name, sep, arg = piece.partition(":")
            pipe_name = pipe_name.strip().lower()
            if pipe_name == "default":
                pipes.append(Pipe("default", _strip_quotes(arg.strip()) if sep else None))
            else:
                pipes.append(Pipe(pipe_name, arg.strip() if sep else None))
    return Expression(raw=text, name=name, path=path, pipes=tuple(pipes))


@dataclass(frozen=True)
class EvaluatorConfig:
    strict_mode: bool = False
    nested_variable_support: bool = True
    escape_html: bool = True
    currency_symbol: str = "¥"

    @classmethod
    def from_settings(cls) -> "EvaluatorConfig":
        return cls(
            strict_mode=settings.STRICT_MODE,
            currency_symbol=settings.CURRENCY_SYMBOL,
        )


class ExpressionEvaluator:
    """
    变量替换引擎
    """

    def __init__(self, config: Optional[EvaluatorConfig] = None):
        self.config = config or EvaluatorConfig()

    # ------------------------------------------------------------------
    # 公共接口
    # ------------------------------------------------------------------
    def parse(self, expression: str) -> Expression:
        return parse_expression(expression)

    def replace(self, template_text: str, bindings: Bindings, *, strict: Optional[bool] = None) -> str:
        """
        替换模板中的所有占位符

        严格模式下遇到无法解析的表达式立即抛出 VariableError；
        非严格模式下保留原始 {{...}} 文本，便于下游检测。
        """
        if not template_text:
            return template_text or ""
        strict_mode = self.config.strict_mode if strict is None else strict
        context = ESCAPE_HTML if self.config.escape_html else None

        def _sub(m: re.Match) -> str:
            raw = m.group(1)
            try:
                value = self.evaluate(raw, bindings)
            except VariableError as e:
                if strict_mode:
                    raise VariableError(
                        f"Failed to replace variable {raw.strip()}: {e.message}",
                        expression=raw.strip(),
                    ) from e
                logger.debug(f"Unresolved placeholder kept: {m.group(0)}")
                return m.group(0)
            return self.escape(value, context)

        return PLACEHOLDER_PATTERN.sub(_sub, template_text)

    def extract(self, template_text: str) -> List[str]:
        """提取去重后的原始表达式（含格式化/默认值后缀），保持出现顺序"""
        seen: set[str] = set()
        out: List[str] = []
        for m in PLACEHOLDER_PATTERN.finditer(template_text or ""):
            expr = m.group(1).strip()
            if expr and expr not in seen:
                seen.add(expr)
                out.append(expr)
        return out

    def validate(self, template_text: str, bindings: Bindings) -> List[ValidationResult]:
        """
        交叉检查表达式与变量：
        - 无法解析的表达式 -> ERROR
        - 提供了但从未被引用的变量 -> WARNING
        """
        results: List[ValidationResult] = []
        expressions = self.extract(template_text)
        referenced: set[str] = set()

        for expr in expressions:
            try:
                parsed = self.parse(expr)
                referenced.add(parsed.root)
                referenced.add(parsed.name)
                self.evaluate(parsed, bindings)
            except VariableError as e:
                results.append(
                    ValidationResult(
                        rule=ValidationRule(
                            type=ValidationRuleType.CONTENT,
                            condition=f"Variable {expr} is required",
                            message=f"Missing variable: {expr}",
                            severity=ValidationSeverity.ERROR,
                        ),
                        passed=False,
                        message=f"Missing variable: {expr}",
                        details=e.message,
                    )
                )

        for name in bindings.keys():
            if name not in referenced:
                results.append(
                    ValidationResult(
                        rule=ValidationRule(
                            type=ValidationRuleType.CONTENT,
                            condition=f"Variable {name} is not used",
                            message=f"Unused variable: {name}",
                            severity=ValidationSeverity.WARNING,
                        ),
                        passed=False,
                        message=f'Variable "{name}" is provided but not used in template',
                    )
                )
        return results

    def evaluate(self, expression: Any, bindings: Bindings) -> Any:
        """
        求值：路径解析 -> 依次执行管道

        Raises:
            VariableError: 变量无法解析且没有默认值
        """
        expr = expression if isinstance(expression, Expression) else self.parse(expression)
        error: Optional[VariableError] = None
        try:
            value = self._resolve(expr, bindings)
        except VariableError as e:
            value = _MISSING
            error = e

        for pipe in expr.pipes:
            if pipe.name == "default":
                if value is _MISSING and pipe.arg is not None:
                    value = pipe.arg
                continue
            if value is _MISSING:
                break
            value = self.format(value, pipe.spec)

        if value is _MISSING:
            raise error or VariableError(f'Variable "{expr.name}" not found', expression=expr.raw)
        return value

    def format(self, value: Any, formatter: Optional[str] = None) -> str:
        """格式化变量值；未知格式化器原样返回字符串形式"""
        text = self.escape(value)
        if not formatter or formatter == "default":
            return text

        name, _, arg = formatter.partition(":")
        name = name.strip().lower()

        if name == "uppercase":
            return text.upper()
        if name == "lowercase":
            return text.lower()
        if name == "capitalize":
            return text[:1].upper() + text[1:]
        if name == "date":
            d = _coerce_datetime(value)
            if d is None:
                return text
            if arg:
                return _format_date_pattern(d, arg.strip().lower())
            return _as_date(d).strftime("%Y-%m-%d")
        if name == "time":
            d = _coerce_datetime(value)
            if isinstance(d, datetime):
                return d.strftime("%H:%M:%S")
            return text
        if name == "datetime":
            d = _coerce_datetime(value)
            if isinstance(d, datetime):
                return d.strftime("%Y-%m-%d %H:%M:%S")
            if d is not None:
                return d.isoformat()
            return text
        if name == "number":
            if _is_number(value):
                return _format_number(value)
            return text
        if name == "currency":
            if _is_number(value):
                return f"{self.config.currency_symbol}{value:.2f}"
            return text
        if name == "percentage":
            if _is_number(value):
                return f"{value * 100:.2f}%"
            return text

        logger.debug(f"Unknown formatter '{formatter}', value passed through")
        return text

    def escape(self, value: Any, context: Optional[str] = None) -> str:
        """
        把变量值转为文本；context="html" 时转义 & < > " '
        """
        if value is None:
            return ""
        if isinstance(value, str):
            return html.escape(value, quote=True) if context == ESCAPE_HTML else value
        if isinstance(value, (bool, int, float)):
            return str(value)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, (list, tuple)):
            return ", ".join(self.escape(item, context) for item in value)
        if isinstance(value, Mapping):
            try:
                text = json.dumps(dict(value), ensure_ascii=False, default=_json_default)
            except (TypeError, ValueError):
                text = "[Object]"
        else:
            text = str(value)
        return html.escape(text, quote=True) if context == ESCAPE_HTML else text

    def unescape(self, text: str, context: Optional[str] = ESCAPE_HTML) -> str:
        if not text or context != ESCAPE_HTML:
            return text
        return html.unescape(text)

    # ------------------------------------------------------------------
    # 内部实现
    # ------------------------------------------------------------------
    def _resolve(self, expr: Expression, bindings: Bindings) -> Any:
        # 键名本身带点号时优先直接命中
        if expr.name in bindings:
            return bindings[expr.name]
        if not self.config.nested_variable_support or len(expr.path) == 1:
            raise VariableError(f'Variable "{expr.name}" not found', expression=expr.raw)

        current: Any = bindings
        for seg in expr.path:
            if seg.key is not None:
                if not isinstance(current, Mapping):
                    raise VariableError(
                        f"Cannot access property {seg.key} on non-object", expression=expr.raw
                    )
                if seg.key not in current:
                    raise VariableError(f"Property {seg.key} not found", expression=expr.raw)
                current = current[seg.key]
            else:
                if not isinstance(current, (list, tuple)):
                    raise VariableError(
                        f"Cannot index non-array with [{seg.index}]", expression=expr.raw
                    )
                if seg.index >= len(current):
                    raise VariableError(
                        f"Index {seg.index} out of bounds for array of length {len(current)}",
                        expression=expr.raw,
                    )
                current = current[seg.index]
        return current


def _json_default(o: Any) -> str:
    if isinstance(o, (datetime, date)):
        return o.isoformat()
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _format_number(value: Any) -> str:
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return str(value)
        if value.is_integer():
            return f"{int(value):,}"
        return f"{round(value, 3):,}"
    return f"{value:,}"


def _coerce_datetime(value: Any) -> Optional[date]:
    if isinstance(value, (datetime, date)):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


def _as_date(d: date) -> date:
    return d.date() if isinstance(d, datetime) else d


def _format_date_pattern(d: date, pattern: str) -> str:
    day = _as_date(d)
    if pattern == "yyyy-mm-dd":
        return day.strftime("%Y-%m-%d")
    if pattern == "mm/dd/yyyy":
        return f"{day.month}/{day.day}/{day.year}"
    if pattern == "dd/mm/yyyy":
        return f"{day.day}/{day.month}/{day.year}"
    return day.strftime("%Y-%m-%d")
