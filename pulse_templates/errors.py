"""
模板系统异常定义

- StructuralError: 模板缺少必要的 metadata/config/content，阻断加载和注册
- ContentError: 长度、格式、风格问题，默认只作为警告
- VariableError: 缺少必需变量，或严格模式下存在无法解析的表达式
- OutputError: 编译后仍残留占位符，与严格模式无关，始终致命
- LoaderError: 所有加载器中都找不到模板，或加载超时/解析失败
"""
from typing import Any, List, Optional


class TemplateError(Exception):
    """模板系统异常基类"""

    code = "TEMPLATE_ERROR"

    def __init__(self, message: str, results: Optional[List[Any]] = None):
        super().__init__(message)
        self.message = message
        self.results = list(results or [])


class StructuralError(TemplateError):
    code = "STRUCTURAL_ERROR"


class ContentError(TemplateError):
    code = "CONTENT_ERROR"


class VariableError(TemplateError):
    code = "VARIABLE_ERROR"

    def __init__(self, message: str, expression: str = "", results: Optional[List[Any]] = None):
        super().__init__(message, results)
        self.expression = expression


class OutputError(TemplateError):
    code = "OUTPUT_ERROR"


class LoaderError(TemplateError):
    code = "LOADER_ERROR"

    def __init__(self, message: str, template_id: str = "", results: Optional[List[Any]] = None):
        super().__init__(message, results)
        self.template_id = template_id
