"""
模板验证引擎

所有检查都是纯函数：输入模板（以及可选的变量/渲染结果），输出 ValidationResult 列表。
每一项“发现”都以 passed=False 返回，严重性决定它是错误、警告还是提示。
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ..config import settings
from ..models import (
    Bindings,
    QualityTier,
    Template,
    TemplateFormat,
    ValidationResult,
    ValidationRule,
    ValidationRuleType,
    ValidationSeverity,
    VariableDefinition,
    VariableType,
)
from ..utils import get_logger
from .expression import PLACEHOLDER_PATTERN

logger = get_logger("template-validation")


UNRESOLVED_PLACEHOLDER_CONDITION = "Output should not contain un-replaced variables"

_MARKDOWN_BAD_LINK = re.compile(r"\[[^\]\n]*\]\([^)\n]*$", re.MULTILINE)
_HTML_TAG = re.compile(r"</?[A-Za-z!][^>]*>")


@dataclass(frozen=True)
class ValidatorConfig:
    validate_structure: bool = True
    validate_content: bool = True
    validate_variables: bool = True
    validate_output: bool = True
    min_section_length: int = 10
    max_section_length: int = 10000
    max_placeholders: int = 100
    min_output_length: int = 100
    required_sections: Tuple[str, ...] = ("header", "body", "footer")
    allowed_formats: Tuple[TemplateFormat, ...] = (TemplateFormat.MARKDOWN, TemplateFormat.PLAIN)

    @classmethod
    def from_settings(cls) -> "ValidatorConfig":
        return cls(
            validate_structure=settings.VALIDATION_ENABLED,
            validate_content=settings.VALIDATION_ENABLED,
            validate_variables=settings.VALIDATION_ENABLED,
            validate_output=settings.VALIDATION_ENABLED,
            required_sections=tuple(settings.REQUIRED_SECTIONS),
            allowed_formats=tuple(TemplateFormat(f) for f in settings.ALLOWED_FORMATS),
        )


def quality_tier(score: int) -> QualityTier:
    """将质量分数映射到质量等级"""
    if score >= 80:
        return QualityTier.HIGH
    if score >= 60:
        return QualityTier.MEDIUM
    if score >= 40:
        return QualityTier.LOW
    return QualityTier.FAILED


def find_unresolved_placeholders(text: str) -> List[str]:
    return [m.group(0) for m in PLACEHOLDER_PATTERN.finditer(text or "")]


def _result(
    rule_type: ValidationRuleType,
    condition: str,
    message: str,
    severity: ValidationSeverity,
    details: Any = None,
) -> ValidationResult:
    return ValidationResult(
        rule=ValidationRule(type=rule_type, condition=condition, message=message, severity=severity),
        passed=False,
        message=message,
        details=details,
    )


class TemplateValidator:
    """
    模板验证引擎
    """

    def __init__(self, config: Optional[ValidatorConfig] = None):
        self.config = config or ValidatorConfig()

    def validate_template(self, template: Template, bindings: Optional[Bindings] = None) -> List[ValidationResult]:
        """结构 + 内容 + 变量"""
        return [
            *self.validate_structure(template),
            *self.validate_content(template),
            *self.validate_variables(template, bindings),
        ]

    def validate_structure(self, template: Template) -> List[ValidationResult]:
        results: List[ValidationResult] = []
        if not self.config.validate_structure:
            return results

        if template.metadata is None or not template.metadata.id:
            results.append(_result(
                ValidationRuleType.STRUCTURE,
                "Template must have metadata with id",
                "Missing template metadata",
                ValidationSeverity.ERROR,
            ))

        if template.config is None:
            results.append(_result(
                ValidationRuleType.STRUCTURE,
                "Template must have configuration",
                "Missing template configuration",
                ValidationSeverity.ERROR,
            ))

        if not template.content or not template.content.strip():
            results.append(_result(
                ValidationRuleType.STRUCTURE,
                "Template must have content",
                "Template content is empty",
                ValidationSeverity.ERROR,
            ))

        config = template.config
        if config is not None:
            if not config.type:
                results.append(_result(
                    ValidationRuleType.STRUCTURE,
                    "Template config must have type",
                    "Missing template type in configuration",
                    ValidationSeverity.ERROR,
                ))
            if not config.language:
                results.append(_result(
                    ValidationRuleType.STRUCTURE,
                    "Template config must have language",
                    "Missing template language in configuration",
                    ValidationSeverity.ERROR,
                ))
            if not config.format:
                results.append(_result(
                    ValidationRuleType.STRUCTURE,
                    "Template config must have format",
                    "Missing template format in configuration",
                    ValidationSeverity.ERROR,
                ))
            elif config.format not in self.config.allowed_formats:
                allowed = ", ".join(f.value for f in self.config.allowed_formats)
                results.append(_result(
                    ValidationRuleType.FORMAT,
                    f"Template format must be one of: {allowed}",
                    f"Unsupported template format: {config.format.value}",
                    ValidationSeverity.ERROR,
                ))
        return results

    def validate_content(self, template: Template) -> List[ValidationResult]:
        results: List[ValidationResult] = []
        if not self.config.validate_content or not template.content:
            return results
        content = template.content

        length = len(content)
        if length < self.config.min_section_length:
            results.append(_result(
                ValidationRuleType.LENGTH,
                f"Template content must be at least {self.config.min_section_length} characters",
                f"Template content is too short: {length} characters",
                ValidationSeverity.WARNING,
            ))
        if length > self.config.max_section_length:
            results.append(_result(
                ValidationRuleType.LENGTH,
                f"Template content must not exceed {self.config.max_section_length} characters",
                f"Template content is too long: {length} characters",
                ValidationSeverity.WARNING,
            ))

        placeholder_count = len(PLACEHOLDER_PATTERN.findall(content))
        if placeholder_count > self.config.max_placeholders:
            results.append(_result(
                ValidationRuleType.CONTENT,
                "Template should not have too many variables",
                f"Template has {placeholder_count} variables, which may be excessive",
                ValidationSeverity.WARNING,
            ))

        results.extend(self._check_format_issues(content))
        return results

    def validate_variables(self, template: Template, bindings: Optional[Bindings] = None) -> List[ValidationResult]:
        """
        检查变量定义是否完整，以及变量值是否为空/NaN/与声明不符

        Args:
            template: 模板
            bindings: 本次调用提供的变量；为 None 时使用 template.variables
        """
        results: List[ValidationResult] = []
        if not self.config.validate_variables:
            return results

        definitions: Sequence[VariableDefinition] = template.config.variables if template.config else []
        for definition in definitions:
            results.extend(self._validate_variable_definition(definition))

        values: Mapping[str, Any] = template.variables if bindings is None else bindings
        by_name = {d.name: d for d in definitions if d.name}
        for name, value in values.items():
            results.extend(self._validate_variable_value(name, value, by_name.get(name)))
        return results

    def validate_output(self, output: str, template: Template) -> List[ValidationResult]:
        results: List[ValidationResult] = []
        if not output or not output.strip():
            # 空输出总是错误，不受开关影响
            results.append(_result(
                ValidationRuleType.CONTENT,
                "Output must not be empty",
                "Generated output is empty",
                ValidationSeverity.ERROR,
            ))
            return results

        unresolved = find_unresolved_placeholders(output)
        if unresolved:
            results.append(_result(
                ValidationRuleType.CONTENT,
                UNRESOLVED_PLACEHOLDER_CONDITION,
                f"Found {len(unresolved)} un-replaced variables in output: {', '.join(unresolved[:10])}",
                ValidationSeverity.ERROR,
                details=unresolved,
            ))

        if not self.config.validate_output:
            return results

        length = len(output)
        if length < self.config.min_output_length:
            results.append(_result(
                ValidationRuleType.LENGTH,
                f"Output should be at least {self.config.min_output_length} characters",
                f"Output is too short: {length} characters",
                ValidationSeverity.WARNING,
            ))

        output_format = self._output_format(template)
        if output_format == TemplateFormat.MARKDOWN:
            results.extend(self._check_markdown_issues(output))
        elif output_format == TemplateFormat.HTML:
            if not _HTML_TAG.search(output):
                results.append(_result(
                    ValidationRuleType.FORMAT,
                    "HTML output should contain HTML tags",
                    "Output marked as HTML but contains no HTML tags",
                    ValidationSeverity.WARNING,
                ))
        return results

    def check_completeness(self, template: Template, bindings: Optional[Bindings] = None) -> List[ValidationResult]:
        results: List[ValidationResult] = []
        config = template.config
        if config is None:
            return results

        present = {s.id for s in config.sections}
        for section_id in self.config.required_sections:
            if section_id not in present:
                results.append(_result(
                    ValidationRuleType.COMPLETENESS,
                    f"Template must have {section_id} section",
                    f"Missing required section: {section_id}",
                    ValidationSeverity.WARNING,
                ))

        values: Mapping[str, Any] = template.variables if bindings is None else bindings
        for definition in config.variables:
            if definition.required and definition.name and definition.name not in values:
                results.append(_result(
                    ValidationRuleType.COMPLETENESS,
                    f"Required variable {definition.name} must be provided",
                    f"Missing required variable: {definition.name}",
                    ValidationSeverity.ERROR,
                ))
        return results

    def calculate_quality_score(self, template: Template, bindings: Optional[Bindings] = None) -> int:
        """
        100 分起扣：结构错误 -10/条，内容问题 -5/条，完整性问题 -15/条，结果夹在 [0, 100]
        """
        score = 100
        score -= 10 * sum(1 for r in self.validate_structure(template) if r.is_error)
        score -= 5 * sum(1 for r in self.validate_content(template) if not r.passed)
        score -= 15 * sum(1 for r in self.check_completeness(template, bindings) if not r.passed)
        return max(0, min(100, score))

    # ------------------------------------------------------------------
    # 内部检查
    # ------------------------------------------------------------------
    def _output_format(self, template: Template) -> Optional[TemplateFormat]:
        if template.config is None:
            return None
        if template.config.output_format is not None:
            return template.config.output_format.type
        return template.config.format

    def _check_format_issues(self, content: str) -> List[ValidationResult]:
        results: List[ValidationResult] = []

        crlf_count = content.count("\r\n")
        lf_count = content.count("\n") - crlf_count
        if crlf_count > 0 and lf_count > 0:
            results.append(_result(
                ValidationRuleType.FORMAT,
                "Template should use consistent line endings",
                "Mixed line endings (CRLF and LF) found in template",
                ValidationSeverity.WARNING,
            ))

        trailing = [
            line for line in content.split("\n")
            if line.strip() and line.rstrip("\r").endswith(" ")
        ]
        if trailing:
            results.append(_result(
                ValidationRuleType.FORMAT,
                "Template should not have trailing spaces",
                f"Found {len(trailing)} lines with trailing spaces",
                ValidationSeverity.WARNING,
            ))

        tab_count = content.count("\t")
        if tab_count:
            results.append(_result(
                ValidationRuleType.FORMAT,
                "Template should use spaces instead of tabs",
                f"Found {tab_count} tab characters",
                ValidationSeverity.WARNING,
            ))
        return results

    def _check_markdown_issues(self, content: str) -> List[ValidationResult]:
        results: List[ValidationResult] = []
        if content.count("```") % 2 != 0:
            results.append(_result(
                ValidationRuleType.FORMAT,
                "Markdown code blocks should be properly closed",
                "Unclosed code block found in Markdown",
                ValidationSeverity.WARNING,
            ))
        bad_links = _MARKDOWN_BAD_LINK.findall(content)
        if bad_links:
            results.append(_result(
                ValidationRuleType.FORMAT,
                "Markdown links should be properly formatted",
                f"Found {len(bad_links)} malformed Markdown links",
                ValidationSeverity.WARNING,
                details=bad_links,
            ))
        return results

    def _validate_variable_definition(self, definition: VariableDefinition) -> List[ValidationResult]:
        results: List[ValidationResult] = []
        label = definition.name or "unknown"
        if not definition.name:
            results.append(_result(
                ValidationRuleType.STRUCTURE,
                "Variable definition must have name",
                "Variable definition missing name",
                ValidationSeverity.ERROR,
            ))
        if not definition.type:
            results.append(_result(
                ValidationRuleType.STRUCTURE,
                "Variable definition must have type",
                f"Variable {label} missing type",
                ValidationSeverity.ERROR,
            ))
        if definition.required is None:
            results.append(_result(
                ValidationRuleType.STRUCTURE,
                "Variable definition must specify required flag",
                f"Variable {label} missing required flag",
                ValidationSeverity.ERROR,
            ))
        return results

    def _validate_variable_value(
        self, name: str, value: Any, definition: Optional[VariableDefinition]
    ) -> List[ValidationResult]:
        results: List[ValidationResult] = []

        if value is None or value == "":
            results.append(_result(
                ValidationRuleType.CONTENT,
                "Variable value should not be empty",
                f"Variable {name} has empty value",
                ValidationSeverity.WARNING,
            ))
            return results

        if isinstance(value, float) and math.isnan(value):
            results.append(_result(
                ValidationRuleType.CONTENT,
                "Variable value should be a valid number",
                f"Variable {name} has NaN value",
                ValidationSeverity.ERROR,
            ))
            return results

        if definition is None or definition.type is None:
            return results

        if not _matches_type(value, definition.type):
            results.append(_result(
                ValidationRuleType.CONTENT,
                f"Variable {name} should be of type {definition.type.value}",
                f"Variable {name} has type {type(value).__name__}, expected {definition.type.value}",
                ValidationSeverity.WARNING,
            ))
            return results

        bounds = definition.validation
        if bounds is None:
            return results

        if definition.type == VariableType.NUMBER:
            if bounds.min is not None and value < bounds.min:
                results.append(_result(
                    ValidationRuleType.CONTENT,
                    f"Variable {name} must be >= {bounds.min}",
                    f"Variable {name} is below minimum: {value} < {bounds.min}",
                    ValidationSeverity.WARNING,
                ))
            if bounds.max is not None and value > bounds.max:
                results.append(_result(
                    ValidationRuleType.CONTENT,
                    f"Variable {name} must be <= {bounds.max}",
                    f"Variable {name} is above maximum: {value} > {bounds.max}",
                    ValidationSeverity.WARNING,
                ))

        if definition.type in (VariableType.STRING, VariableType.ARRAY):
            size = len(value)
            if bounds.min_length is not None and size < bounds.min_length:
                results.append(_result(
                    ValidationRuleType.LENGTH,
                    f"Variable {name} length must be >= {bounds.min_length}",
                    f"Variable {name} is too short: {size} < {bounds.min_length}",
                    ValidationSeverity.WARNING,
                ))
            if bounds.max_length is not None and size > bounds.max_length:
                results.append(_result(
                    ValidationRuleType.LENGTH,
                    f"Variable {name} length must be <= {bounds.max_length}",
                    f"Variable {name} is too long: {size} > {bounds.max_length}",
                    ValidationSeverity.WARNING,
                ))

        if definition.type == VariableType.STRING and bounds.pattern:
            try:
                if not re.search(bounds.pattern, value):
                    results.append(_result(
                        ValidationRuleType.FORMAT,
                        f"Variable {name} must match {bounds.pattern}",
                        f"Variable {name} does not match pattern {bounds.pattern}",
                        ValidationSeverity.WARNING,
                    ))
            except re.error as e:
                logger.warning(f"Invalid pattern for variable {name}: {bounds.pattern} ({e})")

        if bounds.allowed_values is not None and value not in bounds.allowed_values:
            results.append(_result(
                ValidationRuleType.CONTENT,
                f"Variable {name} must be one of the allowed values",
                f"Variable {name} has value outside allowed values: {value!r}",
                ValidationSeverity.WARNING,
            ))
        return results


def _matches_type(value: Any, expected: VariableType) -> bool:
    if expected == VariableType.STRING:
        return isinstance(value, str)
    if expected == VariableType.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == VariableType.BOOLEAN:
        return isinstance(value, bool)
    if expected == VariableType.DATE:
        if isinstance(value, (datetime, date)):
            return True
        if isinstance(value, str):
            try:
                datetime.fromisoformat(value.strip())
                return True
            except ValueError:
                return False
        return False
    if expected == VariableType.ARRAY:
        return isinstance(value, (list, tuple))
    if expected == VariableType.OBJECT:
        return isinstance(value, Mapping)
    return True
