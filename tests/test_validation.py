"""Unit Tests: TemplateValidator - structure, content, variables, output, completeness, score.

Invariants:
    - Every finding is returned with passed=False; severity decides error vs warning
    - Quality score is always within [0, 100], even for empty or malformed templates
    - Unresolved placeholders in output are reported even with output checks disabled
"""

import math

import pytest

from pulse_templates.engines.validation import (
    UNRESOLVED_PLACEHOLDER_CONDITION,
    TemplateValidator,
    ValidatorConfig,
    find_unresolved_placeholders,
    quality_tier,
)
from pulse_templates.models import (
    QualityTier,
    Template,
    TemplateConfig,
    TemplateFormat,
    TemplateMetadata,
    ValidationRuleType,
    VariableDefinition,
    VariableType,
    VariableValidation,
)


def _messages(results):
    return [r.message for r in results]


# -- Structure -------------------------------------------------------------------

def test_well_formed_template_has_no_structural_findings(validator, make_template):
    assert validator.validate_structure(make_template()) == []


def test_empty_template_reports_all_structural_errors(validator):
    results = validator.validate_structure(Template())
    assert _messages(results) == [
        "Missing template metadata",
        "Missing template configuration",
        "Template content is empty",
    ]
    assert all(r.is_error for r in results)


def test_config_without_type_language_format(validator):
    template = Template(metadata=TemplateMetadata(id="x"), config=TemplateConfig(), content="some content")
    messages = _messages(validator.validate_structure(template))
    assert "Missing template type in configuration" in messages
    assert "Missing template language in configuration" in messages
    assert "Missing template format in configuration" in messages


def test_disallowed_format_is_an_error(validator, make_template):
    results = validator.validate_structure(make_template(fmt=TemplateFormat.HTML))
    assert len(results) == 1
    assert results[0].rule.type == ValidationRuleType.FORMAT
    assert results[0].is_error


def test_allowed_formats_are_configurable(make_template):
    html_ok = TemplateValidator(ValidatorConfig(allowed_formats=(TemplateFormat.HTML,)))
    assert html_ok.validate_structure(make_template(fmt=TemplateFormat.HTML)) == []


# -- Content ---------------------------------------------------------------------

def test_short_content_is_a_warning(validator, make_template):
    results = validator.validate_content(make_template(content="Hi"))
    assert len(results) == 1
    assert results[0].is_warning
    assert results[0].rule.type == ValidationRuleType.LENGTH


def test_long_content_is_a_warning(make_template):
    v = TemplateValidator(ValidatorConfig(max_section_length=20))
    results = v.validate_content(make_template(content="x" * 21))
    assert _messages(results) == ["Template content is too long: 21 characters"]


def test_too_many_placeholders(make_template):
    v = TemplateValidator(ValidatorConfig(max_placeholders=2))
    results = v.validate_content(make_template(content="{{a}} {{b}} {{c}}"))
    assert any("3 variables" in m for m in _messages(results))


def test_format_issues(validator, make_template):
    content = "line one \r\nline two\n\tindented line"
    messages = _messages(validator.validate_content(make_template(content=content)))
    assert "Mixed line endings (CRLF and LF) found in template" in messages
    assert "Found 1 lines with trailing spaces" in messages
    assert "Found 1 tab characters" in messages


# -- Variables -------------------------------------------------------------------

def test_incomplete_variable_definition(validator, make_template):
    template = make_template(variables=[VariableDefinition()])
    results = validator.validate_variables(template)
    assert _messages(results) == [
        "Variable definition missing name",
        "Variable unknown missing type",
        "Variable unknown missing required flag",
    ]
    assert all(r.is_error for r in results)


def test_empty_value_is_warning_and_nan_is_error(validator, make_template):
    results = validator.validate_variables(make_template(), {"a": "", "b": None, "c": math.nan})
    assert [r.is_warning for r in results] == [True, True, False]
    assert results[2].is_error


def test_bindings_default_to_template_variables(validator, make_template):
    template = make_template()
    template.variables = {"name": ""}
    assert _messages(validator.validate_variables(template)) == ["Variable name has empty value"]


def test_type_mismatch_and_bounds(validator, make_template, required_var):
    template = make_template(variables=[
        required_var("count", VariableType.NUMBER, validation=VariableValidation(min=0, max=10)),
        required_var("title", validation=VariableValidation(max_length=3, pattern=r"^[a-z]+$")),
        required_var("mode", validation=VariableValidation(allowed_values=["a", "b"])),
        required_var("when", VariableType.DATE),
    ])
    results = validator.validate_variables(
        template, {"count": 11, "title": "ABCD", "mode": "c", "when": "not a date"}
    )
    messages = _messages(results)
    assert "Variable count is above maximum: 11 > 10.0" in messages
    assert "Variable title is too long: 4 > 3" in messages
    assert "Variable title does not match pattern ^[a-z]+$" in messages
    assert "Variable mode has value outside allowed values: 'c'" in messages
    assert "Variable when has type str, expected date" in messages
    assert all(r.is_warning for r in results)


def test_boolean_is_not_a_number(validator, make_template, required_var):
    template = make_template(variables=[required_var("n", VariableType.NUMBER)])
    results = validator.validate_variables(template, {"n": True})
    assert _messages(results) == ["Variable n has type bool, expected number"]


def test_iso_string_is_a_valid_date(validator, make_template, required_var):
    template = make_template(variables=[required_var("d", VariableType.DATE)])
    assert validator.validate_variables(template, {"d": "2024-01-02"}) == []


# -- Output ----------------------------------------------------------------------

def test_empty_output_is_an_error(validator, make_template):
    results = validator.validate_output("   ", make_template())
    assert len(results) == 1 and results[0].is_error


def test_unresolved_placeholder_in_output(validator, make_template):
    results = validator.validate_output("Hello {{missing}} and {{other|uppercase}}", make_template())
    unresolved = [r for r in results if r.rule.condition == UNRESOLVED_PLACEHOLDER_CONDITION]
    assert len(unresolved) == 1
    assert unresolved[0].is_error
    assert unresolved[0].details == ["{{missing}}", "{{other|uppercase}}"]


def test_unresolved_placeholder_reported_when_output_checks_disabled(make_template):
    v = TemplateValidator(ValidatorConfig(validate_output=False))
    results = v.validate_output("{{missing}}", make_template())
    assert [r.rule.condition for r in results] == [UNRESOLVED_PLACEHOLDER_CONDITION]


def test_short_output_warning(validator, make_template):
    results = validator.validate_output("short text", make_template())
    assert _messages(results) == ["Output is too short: 10 characters"]


def test_markdown_output_checks(validator, make_template):
    output = "# Title\n\n```python\nprint(1)\n\nSee [docs](http://example.com\n" + "x" * 100
    results = validator.validate_output(output, make_template(fmt=TemplateFormat.MARKDOWN))
    messages = _messages(results)
    assert "Unclosed code block found in Markdown" in messages
    assert "Found 1 malformed Markdown links" in messages


def test_well_formed_markdown_link_is_fine(validator, make_template):
    output = "See [docs](http://example.com) for details.\n" + "x" * 100
    assert validator.validate_output(output, make_template(fmt=TemplateFormat.MARKDOWN)) == []


def test_html_output_without_tags(make_template):
    v = TemplateValidator(ValidatorConfig(allowed_formats=(TemplateFormat.HTML,)))
    results = v.validate_output("plain words " * 20, make_template(fmt=TemplateFormat.HTML))
    assert _messages(results) == ["Output marked as HTML but contains no HTML tags"]


def test_find_unresolved_placeholders():
    assert find_unresolved_placeholders("a {{x}} b {{ y }}") == ["{{x}}", "{{ y }}"]
    assert find_unresolved_placeholders("") == []


# -- Completeness ----------------------------------------------------------------

def test_missing_sections_are_warnings(validator, make_template):
    results = validator.check_completeness(make_template(sections=("header",)))
    assert _messages(results) == ["Missing required section: body", "Missing required section: footer"]
    assert all(r.is_warning for r in results)


def test_missing_required_variable_is_an_error(validator, make_template, required_var):
    template = make_template(variables=[required_var("date"), required_var("note", required=False)])
    results = validator.check_completeness(template, {})
    assert _messages(results) == ["Missing required variable: date"]
    assert results[0].is_error


def test_present_but_empty_required_variable_is_complete(validator, make_template, required_var):
    template = make_template(variables=[required_var("date")])
    assert validator.check_completeness(template, {"date": None}) == []


# -- Quality score ---------------------------------------------------------------

def test_perfect_template_scores_100(validator, make_template):
    assert validator.calculate_quality_score(make_template()) == 100


def test_empty_template_score_is_bounded(validator):
    score = validator.calculate_quality_score(Template())
    assert 0 <= score <= 100
    assert score == 70


def test_score_floors_at_zero(validator, make_template, required_var):
    template = make_template(
        content="\tx ",
        sections=(),
        variables=[required_var(f"v{i}") for i in range(10)],
    )
    assert validator.calculate_quality_score(template, {}) == 0


def test_score_uses_supplied_bindings(validator, make_template, required_var):
    template = make_template(variables=[required_var("date")])
    assert validator.calculate_quality_score(template, {}) == 85
    assert validator.calculate_quality_score(template, {"date": "2024-01-01"}) == 100


@pytest.mark.parametrize(
    "score, tier",
    [(100, QualityTier.HIGH), (80, QualityTier.HIGH), (79, QualityTier.MEDIUM),
     (60, QualityTier.MEDIUM), (40, QualityTier.LOW), (39, QualityTier.FAILED), (0, QualityTier.FAILED)],
)
def test_quality_tier(score, tier):
    assert quality_tier(score) == tier


def test_every_finding_is_not_passed(validator):
    template = Template(content="\t")
    results = [
        *validator.validate_template(template, {"x": ""}),
        *validator.validate_output("{{x}}", template),
        *validator.check_completeness(template),
    ]
    assert results
    assert all(r.passed is False for r in results)
