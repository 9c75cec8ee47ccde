"""
内置摘要模板

每日总结 / 投资焦点总结 / 简要总结，各有中文和英文版本。
可选变量在正文中都带有 default 管道，只提供必需变量即可完整渲染。
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import settings
from .loaders import TemplateLoader
from .models import (
    OutputFormat,
    Template,
    TemplateConfig,
    TemplateFormat,
    TemplateLanguage,
    TemplateMetadata,
    TemplateSection,
    TemplateType,
    ValidationRule,
    ValidationRuleType,
    ValidationSeverity,
    VariableDefinition,
    VariableSource,
    VariableType,
    VariableValidation,
)
from .utils import get_logger

logger = get_logger("template-definitions")

DEFAULT_DATA_SOURCES = "Twitter, YouTube, TikTok, 微博, 抖音"


def _section(
    section_id: str,
    name: str,
    description: str,
    variables: Sequence[str],
    required: bool = True,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
    guidance: Optional[str] = None,
) -> TemplateSection:
    return TemplateSection(
        id=section_id,
        name=name,
        description=description,
        required=required,
        min_length=min_length,
        max_length=max_length,
        format="markdown",
        variables=list(variables),
        guidance=guidance,
    )


def _variable(
    name: str,
    var_type: VariableType,
    required: bool,
    description: str,
    default=None,
    source: VariableSource = VariableSource.DATA,
    validation: Optional[VariableValidation] = None,
) -> VariableDefinition:
    return VariableDefinition(
        name=name,
        type=var_type,
        required=required,
        description=description,
        default=default,
        source=source,
        validation=validation,
    )


def _template(
    template_id: str,
    name: str,
    description: str,
    tags: List[str],
    template_type: TemplateType,
    sections: List[TemplateSection],
    variables: List[VariableDefinition],
    rules: List[ValidationRule],
    content: str,
) -> Template:
    return Template(
        metadata=TemplateMetadata(
            id=template_id,
            name=name,
            description=description,
            version="1.0.0",
            author="System",
            tags=tags,
            compatible_with=["1.0.0"],
        ),
        config=TemplateConfig(
            type=template_type,
            language=TemplateLanguage.ZH,
            format=TemplateFormat.MARKDOWN,
            sections=sections,
            variables=variables,
            validation_rules=rules,
            output_format=OutputFormat(type=TemplateFormat.MARKDOWN),
        ),
        content=content,
    )


def _translate(
    source: Template,
    template_id: str,
    name: str,
    description: str,
    tags: List[str],
    replacements: Sequence[Tuple[str, str]],
) -> Template:
    """基于中文模板生成英文版本"""
    template = source.clone()
    template.metadata.id = template_id
    template.metadata.name = name
    template.metadata.description = description
    template.metadata.tags = tags
    template.config.language = TemplateLanguage.EN
    content = template.content
    for old, new in replacements:
        content = content.replace(old, new)
    template.content = content
    return template


# ============================================================================
# 每日总结
# ============================================================================

DAILY_SUMMARY_ZH_CONTENT = """# {{title|default:每日新闻总结}} - {{date|date:yyyy-mm-dd}}

## 概览

{{overviewSummary}}

今日共收集 {{totalNewsCount|number}} 条新闻，来自多个社交平台。

## 国内热点

{{domesticNews}}

{{domesticTrends|default:}}

## 国际热点

{{internationalNews}}

{{globalTrends|default:}}

## 投资热点

{{investmentNews|default:暂无投资相关热点}}

{{marketTrends|default:}}

## 趋势分析

{{keyTrends|default:}}

{{predictions|default:}}

---

*总结生成时间：{{generatedAt|datetime}}*
*数据来源：{{dataSources|default:Twitter, YouTube, TikTok, 微博, 抖音}}*
{{disclaimer|default:*本总结由AI生成，仅供参考，不构成投资建议。*}}
"""


def create_daily_summary_template_zh() -> Template:
    sections = [
        _section("header", "标题和日期", "总结的标题和生成日期", ["title", "date"], min_length=50, max_length=200,
                 guidance="生成清晰简洁的标题，包含日期"),
        _section("body", "概览与热点", "今日新闻概览、国内热点和国际热点",
                 ["overviewSummary", "totalNewsCount", "domesticNews", "internationalNews"],
                 min_length=300, max_length=3000, guidance="按重要性排序，每个热点提供简要描述、影响分析和趋势判断"),
        _section("investment", "投资热点", "投资相关热点新闻", ["investmentNews", "marketTrends"], required=False),
        _section("trends", "趋势分析", "关键趋势和未来预测", ["keyTrends", "predictions"], required=False),
        _section("footer", "页脚", "生成时间、数据来源和免责声明", ["generatedAt", "dataSources", "disclaimer"]),
    ]
    variables = [
        _variable("title", VariableType.STRING, False, "总结标题", "每日新闻总结", VariableSource.SYSTEM),
        _variable("date", VariableType.DATE, True, "总结日期", source=VariableSource.SYSTEM),
        _variable("totalNewsCount", VariableType.NUMBER, True, "新闻总数", 0,
                  validation=VariableValidation(min=0)),
        _variable("overviewSummary", VariableType.STRING, True, "总体概览", source=VariableSource.AI,
                  validation=VariableValidation(min_length=20, max_length=500)),
        _variable("domesticNews", VariableType.STRING, True, "国内热点（Markdown 列表）"),
        _variable("domesticTrends", VariableType.STRING, False, "国内趋势分析", "", VariableSource.AI),
        _variable("internationalNews", VariableType.STRING, True, "国际热点（Markdown 列表）"),
        _variable("globalTrends", VariableType.STRING, False, "全球趋势分析", "", VariableSource.AI),
        _variable("investmentNews", VariableType.STRING, False, "投资热点（Markdown 列表）"),
        _variable("marketTrends", VariableType.STRING, False, "市场趋势分析", "", VariableSource.AI),
        _variable("keyTrends", VariableType.STRING, False, "关键趋势", "", VariableSource.AI),
        _variable("predictions", VariableType.STRING, False, "未来预测", "", VariableSource.AI),
        _variable("generatedAt", VariableType.DATE, True, "生成时间", source=VariableSource.SYSTEM),
        _variable("dataSources", VariableType.STRING, False, "数据来源", DEFAULT_DATA_SOURCES, VariableSource.SYSTEM),
        _variable("disclaimer", VariableType.STRING, False, "免责声明",
                  "*本总结由AI生成，仅供参考，不构成投资建议。*", VariableSource.SYSTEM),
    ]
    rules = [
        ValidationRule(type=ValidationRuleType.COMPLETENESS, condition="hasOverview",
                       message="必须包含概览部分", severity=ValidationSeverity.ERROR),
        ValidationRule(type=ValidationRuleType.LENGTH, condition="overviewLength",
                       message="概览部分长度应在200-500字符之间", severity=ValidationSeverity.WARNING),
        ValidationRule(type=ValidationRuleType.FORMAT, condition="markdownFormat",
                       message="必须使用正确的Markdown格式", severity=ValidationSeverity.WARNING),
    ]
    return _template(
        "daily-summary-zh",
        "每日新闻总结模板（中文）",
        "标准每日新闻总结模板，包含概览、国内热点、国际热点、投资热点等部分",
        ["daily", "summary", "zh", "news"],
        TemplateType.DAILY,
        sections,
        variables,
        rules,
        DAILY_SUMMARY_ZH_CONTENT,
    )


def create_daily_summary_template_en() -> Template:
    return _translate(
        create_daily_summary_template_zh(),
        "daily-summary-en",
        "Daily News Summary Template (English)",
        "Standard daily news summary template with overview, domestic hotspots, "
        "international hotspots, and investment hotspots sections",
        ["daily", "summary", "en", "news"],
        [
            ("每日新闻总结", "Daily News Summary"),
            ("## 概览", "## Overview"),
            ("今日共收集 {{totalNewsCount|number}} 条新闻，来自多个社交平台。",
             "{{totalNewsCount|number}} news items were collected today from multiple social platforms."),
            ("## 国内热点", "## Domestic Hotspots"),
            ("## 国际热点", "## International Hotspots"),
            ("## 投资热点", "## Investment Hotspots"),
            ("暂无投资相关热点", "No investment hotspots today"),
            ("## 趋势分析", "## Trend Analysis"),
            ("总结生成时间：", "Generated at: "),
            ("数据来源：", "Data sources: "),
            ("本总结由AI生成，仅供参考，不构成投资建议。",
             "This summary is AI-generated, for reference only, not investment advice."),
        ],
    )


# ============================================================================
# 投资焦点总结
# ============================================================================

INVESTMENT_SUMMARY_ZH_CONTENT = """# {{title|default:投资焦点总结}} - {{date|date:yyyy-mm-dd}}

## 市场概况

今日市场整体{{overallSentiment}}。

{{marketIndicators|default:}}

## 股市动态

{{stockNews}}

{{sectorPerformance|default:}}

## 加密货币

{{cryptoNews|default:暂无加密货币相关动态}}

## 投资机会

{{opportunities|default:}}

---

**风险提示**：{{riskWarning|default:市场有风险，投资需谨慎。本总结仅供参考，不构成投资建议。}}

*生成时间：{{generatedAt|datetime}}*
*数据来源：{{dataSources|default:Twitter, YouTube, TikTok, 微博, 抖音}}*
"""


def create_investment_summary_template_zh() -> Template:
    sections = [
        _section("header", "标题和日期", "投资总结的标题和生成日期", ["title", "date"], min_length=50, max_length=200),
        _section("body", "市场与个股", "市场概况、股市动态", ["overallSentiment", "marketIndicators", "stockNews"],
                 min_length=300, max_length=3000, guidance="详细分析股票市场，关注板块和个股表现"),
        _section("cryptoMarket", "加密货币", "加密货币市场分析", ["cryptoNews"], required=False),
        _section("opportunities", "投资机会", "潜在投资机会", ["opportunities"], required=False),
        _section("footer", "风险提示", "风险提示、生成时间和数据来源", ["riskWarning", "generatedAt", "dataSources"]),
    ]
    variables = [
        _variable("title", VariableType.STRING, False, "总结标题", "投资焦点总结", VariableSource.SYSTEM),
        _variable("date", VariableType.DATE, True, "总结日期", source=VariableSource.SYSTEM),
        _variable("overallSentiment", VariableType.STRING, True, "市场整体情绪", source=VariableSource.AI,
                  validation=VariableValidation(max_length=20)),
        _variable("marketIndicators", VariableType.STRING, False, "主要指数表现", ""),
        _variable("stockNews", VariableType.STRING, True, "股市动态（Markdown 列表）"),
        _variable("sectorPerformance", VariableType.STRING, False, "板块表现", ""),
        _variable("cryptoNews", VariableType.STRING, False, "加密货币动态"),
        _variable("opportunities", VariableType.STRING, False, "投资机会", "", VariableSource.AI),
        _variable("riskWarning", VariableType.STRING, False, "风险提示",
                  "市场有风险，投资需谨慎。本总结仅供参考，不构成投资建议。", VariableSource.SYSTEM),
        _variable("generatedAt", VariableType.DATE, True, "生成时间", source=VariableSource.SYSTEM),
        _variable("dataSources", VariableType.STRING, False, "数据来源", DEFAULT_DATA_SOURCES, VariableSource.SYSTEM),
    ]
    rules = [
        ValidationRule(type=ValidationRuleType.COMPLETENESS, condition="hasRiskWarning",
                       message="必须包含风险提示", severity=ValidationSeverity.ERROR),
        ValidationRule(type=ValidationRuleType.CONTENT, condition="noInvestmentAdvice",
                       message="不得包含具体投资建议", severity=ValidationSeverity.WARNING),
    ]
    return _template(
        "investment-summary-zh",
        "投资焦点总结模板（中文）",
        "投资焦点总结模板，专注于金融市场、股票、加密货币等投资相关信息",
        ["investment", "summary", "zh", "finance"],
        TemplateType.INVESTMENT,
        sections,
        variables,
        rules,
        INVESTMENT_SUMMARY_ZH_CONTENT,
    )


def create_investment_summary_template_en() -> Template:
    return _translate(
        create_investment_summary_template_zh(),
        "investment-summary-en",
        "Investment Focus Summary Template (English)",
        "Investment focus summary template focusing on financial markets, stocks, "
        "cryptocurrencies, and other investment-related information",
        ["investment", "summary", "en", "finance"],
        [
            ("投资焦点总结", "Investment Focus Summary"),
            ("## 市场概况", "## Market Overview"),
            ("今日市场整体{{overallSentiment}}。", "Overall market sentiment today: {{overallSentiment}}."),
            ("## 股市动态", "## Stock Market Dynamics"),
            ("## 加密货币", "## Cryptocurrency Market"),
            ("暂无加密货币相关动态", "No cryptocurrency updates today"),
            ("## 投资机会", "## Investment Opportunities"),
            ("**风险提示**：", "**Risk Disclaimer**: "),
            ("市场有风险，投资需谨慎。本总结仅供参考，不构成投资建议。",
             "Market risk exists, invest with caution. This summary is for reference only, not investment advice."),
            ("生成时间：", "Generated at: "),
            ("数据来源：", "Data sources: "),
        ],
    )


# ============================================================================
# 简要总结
# ============================================================================

BRIEF_SUMMARY_ZH_CONTENT = """# 新闻速览 - {{date|date:yyyy-mm-dd}}

**今日数据**：{{totalNews|number}}条新闻，{{topPlatform}}最活跃
**热门话题**：{{trendingTopics}}

## 头条新闻

{{topStories}}

## 关键要点

{{keyTakeaways}}

## 关注事项

{{actionItems|default:暂无}}

---

*生成时间：{{generatedAt|datetime}}*
"""


def create_brief_summary_template_zh() -> Template:
    sections = [
        _section("header", "标题", "简要总结标题", ["date"], min_length=20, max_length=100),
        _section("body", "速览", "关键数据、头条新闻和关键要点",
                 ["totalNews", "topPlatform", "trendingTopics", "topStories", "keyTakeaways"],
                 min_length=200, max_length=1200, guidance="选择最重要的新闻，每条用一句话描述"),
        _section("actionItems", "关注事项", "需要持续关注的事项", ["actionItems"], required=False),
        _section("footer", "页脚", "生成时间", ["generatedAt"]),
    ]
    variables = [
        _variable("date", VariableType.DATE, True, "总结日期", source=VariableSource.SYSTEM),
        _variable("totalNews", VariableType.NUMBER, True, "新闻总数", 0, validation=VariableValidation(min=0)),
        _variable("topPlatform", VariableType.STRING, True, "最活跃平台"),
        _variable("trendingTopics", VariableType.ARRAY, True, "热门话题",
                  validation=VariableValidation(min_length=1, max_length=10)),
        _variable("topStories", VariableType.STRING, True, "头条新闻（Markdown 列表）", source=VariableSource.AI),
        _variable("keyTakeaways", VariableType.STRING, True, "关键要点（Markdown 列表）", source=VariableSource.AI),
        _variable("actionItems", VariableType.STRING, False, "关注事项", source=VariableSource.AI),
        _variable("generatedAt", VariableType.DATE, True, "生成时间", source=VariableSource.SYSTEM),
    ]
    rules = [
        ValidationRule(type=ValidationRuleType.LENGTH, condition="briefLength",
                       message="简要总结应控制在1200字符以内", severity=ValidationSeverity.WARNING),
    ]
    return _template(
        "brief-summary-zh",
        "简要新闻总结模板（中文）",
        "简要新闻总结模板，提供快速概览和要点",
        ["brief", "summary", "zh", "quick"],
        TemplateType.BRIEF,
        sections,
        variables,
        rules,
        BRIEF_SUMMARY_ZH_CONTENT,
    )


def create_brief_summary_template_en() -> Template:
    return _translate(
        create_brief_summary_template_zh(),
        "brief-summary-en",
        "Brief News Summary Template (English)",
        "Brief news summary template providing quick overview and key points",
        ["brief", "summary", "en", "quick"],
        [
            ("新闻速览", "News Brief"),
            ("**今日数据**：{{totalNews|number}}条新闻，{{topPlatform}}最活跃",
             "**Today's Data**: {{totalNews|number}} news items, most active on {{topPlatform}}"),
            ("**热门话题**：", "**Trending Topics**: "),
            ("## 头条新闻", "## Top Stories"),
            ("## 关键要点", "## Key Takeaways"),
            ("## 关注事项", "## Action Items"),
            ("{{actionItems|default:暂无}}", "{{actionItems|default:None}}"),
            ("生成时间：", "Generated at: "),
        ],
    )


# ============================================================================
# 注册表
# ============================================================================

class TemplateRegistry:
    """
    内置模板注册表

    保存模板工厂函数，每次 get() 都返回新的模板实例。
    """

    def __init__(self, factories: Optional[Dict[str, Callable[[], Template]]] = None):
        self._factories: Dict[str, Callable[[], Template]] = dict(factories or {})

    def register(self, template_id: str, factory: Callable[[], Template]) -> None:
        self._factories[template_id] = factory

    def get(self, template_id: str) -> Optional[Template]:
        factory = self._factories.get(template_id)
        return factory() if factory else None

    def resolve(self, template_type: TemplateType, language: Optional[str] = None) -> Optional[Template]:
        """
        按类型和语言查找模板，找不到时回退到备用语言
        """
        for lang in (language or settings.DEFAULT_LANGUAGE, settings.FALLBACK_LANGUAGE):
            template = self.get(f"{template_type.value}-summary-{lang}")
            if template is not None:
                return template
        return None

    def ids(self) -> List[str]:
        return list(self._factories)

    def has(self, template_id: str) -> bool:
        return template_id in self._factories

    def remove(self, template_id: str) -> bool:
        return self._factories.pop(template_id, None) is not None

    def clear(self) -> None:
        self._factories.clear()

    def templates(self) -> List[Template]:
        return [factory() for factory in self._factories.values()]


def builtin_registry() -> TemplateRegistry:
    return TemplateRegistry({
        "daily-summary-zh": create_daily_summary_template_zh,
        "investment-summary-zh": create_investment_summary_template_zh,
        "brief-summary-zh": create_brief_summary_template_zh,
        "daily-summary-en": create_daily_summary_template_en,
        "investment-summary-en": create_investment_summary_template_en,
        "brief-summary-en": create_brief_summary_template_en,
    })


async def seed_loader(loader: TemplateLoader, registry: Optional[TemplateRegistry] = None) -> int:
    """
    把注册表中的模板保存到加载器

    Returns:
        保存的模板数量
    """
    registry = registry or builtin_registry()
    count = 0
    for template in registry.templates():
        await loader.save(template)
        count += 1
    logger.info(f"Seeded {count} built-in templates into {loader.info().name}")
    return count
