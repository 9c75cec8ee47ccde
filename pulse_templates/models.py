"""
模板系统数据模型定义
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field, ValidationError
from pydantic_core import PydanticSerializationError

from .errors import LoaderError


# 变量值：String | Number | Bool | Date | Array | Map（None 表示“已提供但为空”）
VariableValue = Union[str, int, float, bool, date, datetime, List[Any], Dict[str, Any], None]
Bindings = Mapping[str, Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TemplateType(str, PyEnum):
    """模板（总结）类型"""
    DAILY = "daily"  # 每日总结
    INVESTMENT = "investment"  # 投资焦点总结
    BRIEF = "brief"  # 简要总结
    CUSTOM = "custom"  # 自定义总结


class TemplateLanguage(str, PyEnum):
    """模板语言"""
    ZH = "zh"
    EN = "en"


class TemplateFormat(str, PyEnum):
    """输出格式"""
    MARKDOWN = "markdown"
    HTML = "html"
    PLAIN = "plain"
    RICH = "rich"


class VariableType(str, PyEnum):
    """模板变量类型"""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"
    OBJECT = "object"


class VariableSource(str, PyEnum):
    """变量来源"""
    SYSTEM = "system"  # 系统生成（日期、时间等）
    USER = "user"  # 用户提供
    DATA = "data"  # 数据源
    AI = "ai"  # AI生成
    COMPUTED = "computed"  # 计算得出


class ValidationRuleType(str, PyEnum):
    """验证规则类型"""
    STRUCTURE = "structure"
    CONTENT = "content"
    LENGTH = "length"
    FORMAT = "format"
    COMPLETENESS = "completeness"
    QUALITY = "quality"


class ValidationSeverity(str, PyEnum):
    """验证严重性"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class QualityTier(str, PyEnum):
    """质量等级"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    FAILED = "failed"


class GenerationState(str, PyEnum):
    """generate() 流水线状态"""
    LOADING = "loading"
    VALIDATING_STRUCTURE = "validating_structure"
    VALIDATING_VARIABLES = "validating_variables"
    COMPLETENESS_CHECK = "completeness_check"
    COMPILING = "compiling"
    VALIDATING_OUTPUT = "validating_output"
    SCORING = "scoring"
    DONE = "done"
    FAILED = "failed"


class TemplateSection(BaseModel):
    """模板部分（用于完整性检查的结构单元，不单独存储正文）"""
    id: str
    name: str = ""
    description: Optional[str] = None
    required: bool = True
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    format: Optional[str] = None
    variables: List[str] = Field(default_factory=list)
    content_example: Optional[str] = None
    guidance: Optional[str] = None


class VariableValidation(BaseModel):
    """变量取值约束"""
    min: Optional[float] = None
    max: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    allowed_values: Optional[List[Any]] = None


class VariableDefinition(BaseModel):
    """
    模板变量定义

    name/type/required 允许缺省，以便校验器能报告不完整的定义。
    """
    name: Optional[str] = None
    type: Optional[VariableType] = None
    description: Optional[str] = None
    required: Optional[bool] = None
    default: Any = None
    source: VariableSource = VariableSource.DATA
    validation: Optional[VariableValidation] = None


class ValidationRule(BaseModel):
    """验证规则"""
    type: ValidationRuleType
    condition: str
    message: str
    severity: ValidationSeverity = ValidationSeverity.ERROR


class OutputFormatOptions(BaseModel):
    include_header: bool = True
    include_footer: bool = True
    include_metadata: bool = False
    encoding: str = "utf-8"
    line_ending: Literal["lf", "crlf"] = "lf"


class OutputFormat(BaseModel):
    """输出格式"""
    type: TemplateFormat
    options: OutputFormatOptions = Field(default_factory=OutputFormatOptions)


class TemplateConfig(BaseModel):
    """模板配置"""
    type: Optional[TemplateType] = None
    language: Optional[TemplateLanguage] = None
    format: Optional[TemplateFormat] = None
    sections: List[TemplateSection] = Field(default_factory=list)
    variables: List[VariableDefinition] = Field(default_factory=list)
    validation_rules: List[ValidationRule] = Field(default_factory=list)
    output_format: Optional[OutputFormat] = None


class TemplateMetadata(BaseModel):
    """模板元数据"""
    id: str = ""
    name: str = ""
    description: Optional[str] = None
    version: str = "1.0.0"
    author: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    tags: List[str] = Field(default_factory=list)
    compatible_with: List[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """验证结果（每次调用生成，不跨调用持久化）"""
    rule: ValidationRule
    passed: bool
    message: Optional[str] = None
    details: Any = None
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def severity(self) -> ValidationSeverity:
        return self.rule.severity

    @property
    def is_error(self) -> bool:
        return not self.passed and self.rule.severity == ValidationSeverity.ERROR

    @property
    def is_warning(self) -> bool:
        return not self.passed and self.rule.severity == ValidationSeverity.WARNING


class Template(BaseModel):
    """
    模板实例

    metadata/config 允许为空，以便对残缺模板进行校验和打分。
    """
    metadata: Optional[TemplateMetadata] = None
    config: Optional[TemplateConfig] = None
    content: Optional[str] = ""
    variables: Dict[str, Any] = Field(default_factory=dict)
    validation_results: List[ValidationResult] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.metadata.id if self.metadata else ""

    def clone(self) -> "Template":
        return self.model_copy(deep=True)


class GenerationResult(BaseModel):
    """模板生成结果"""
    success: bool
    template: Optional[Template] = None
    output: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    validation_results: List[ValidationResult] = Field(default_factory=list)
    generation_time_ms: float = 0.0
    quality: QualityTier = QualityTier.FAILED
    quality_score: int = 0
    state: GenerationState = GenerationState.DONE


@dataclass(frozen=True)
class LoadOptions:
    """模板加载选项（None 表示沿用引擎配置）"""
    cache: Optional[bool] = None
    validate: Optional[bool] = None
    timeout: Optional[float] = None
    version: Optional[str] = None
    language: Optional[TemplateLanguage] = None
    type: Optional[TemplateType] = None


@dataclass(frozen=True)
class GenerateOptions:
    """generate() 选项（None 表示沿用引擎配置）"""
    strict: Optional[bool] = None
    use_cache: Optional[bool] = None
    timeout: Optional[float] = None
    apply_defaults: bool = True


@dataclass(frozen=True)
class TemplateFilter:
    """
    模板过滤器

    version 为精确匹配；version_min/version_max 为闭区间。
    id_pattern/include/exclude 只作用于模板ID，供加载器的 list() 使用。
    """
    type: Optional[TemplateType] = None
    language: Optional[TemplateLanguage] = None
    format: Optional[TemplateFormat] = None
    tags: Sequence[str] = field(default_factory=tuple)
    version: Optional[str] = None
    version_min: Optional[str] = None
    version_max: Optional[str] = None
    id_pattern: Optional[str] = None
    include: Optional[Sequence[str]] = None
    exclude: Optional[Sequence[str]] = None


def version_key(version: str) -> Tuple:
    """
    "1.10.0" -> (1, 10, 0)；非数字段按字符串比较
    """
    parts: List[Tuple[int, Any]] = []
    for p in (version or "").strip().split("."):
        if p.isdigit():
            parts.append((0, int(p)))
        else:
            parts.append((1, p))
    return tuple(parts)


def matches_filter(template: Template, flt: Optional[TemplateFilter]) -> bool:
    """检查模板是否匹配过滤器"""
    if flt is None:
        return True
    config = template.config
    metadata = template.metadata

    if flt.type and (config is None or config.type != flt.type):
        return False
    if flt.language and (config is None or config.language != flt.language):
        return False
    if flt.format and (config is None or config.format != flt.format):
        return False
    if flt.tags:
        tags = set(metadata.tags) if metadata else set()
        if not all(t in tags for t in flt.tags):
            return False

    version = metadata.version if metadata else ""
    if flt.version and version != flt.version:
        return False
    if flt.version_min and version_key(version) < version_key(flt.version_min):
        return False
    if flt.version_max and version_key(version) > version_key(flt.version_max):
        return False
    return True


def template_to_json(template: Template, *, indent: Optional[int] = 2) -> str:
    """
    序列化为持久化JSON格式（日期字段为 ISO-8601 字符串）
    """
    return template.model_dump_json(indent=indent)


def template_from_json(payload: Union[str, bytes], template_id: str = "") -> Template:
    """
    从持久化JSON解析模板，日期字段解析回 datetime

    Raises:
        LoaderError: JSON 无效或缺少 metadata/config/content
    """
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise LoaderError(f"Failed to parse template file {template_id}: {e}") from e
    if not isinstance(data, dict) or not data.get("metadata") or not data.get("config") or not data.get("content"):
        raise LoaderError(f"Failed to parse template file {template_id}: invalid template file structure")
    try:
        return Template.model_validate(data)
    except ValidationError as e:
        raise LoaderError(f"Failed to parse template file {template_id}: {e}") from e


def serialized_size(template: Template) -> int:
    """模板序列化后的 UTF-8 字节数"""
    try:
        payload = template.model_dump_json()
    except PydanticSerializationError:
        payload = json.dumps(template.model_dump(), default=str, ensure_ascii=False)
    return len(payload.encode("utf-8"))
