"""Tests for placeholder parsing and resolution."""

import pytest

from caseflow.actions.templates import (
    TemplateContext,
    parse_reference,
    referenced_steps,
    resolve,
    unresolved_references,
)
from caseflow.errors import TemplateResolutionError


def test_parse_reference_forms():
    assert parse_reference("input.case_id").path == ("case_id",)
    ref = parse_reference("steps.ocr.output.text")
    assert ref.step_id == "ocr"
    assert ref.path == ("text",)
    assert parse_reference("steps.ocr.output").path == ()
    assert parse_reference("timestamp").root == "timestamp"


@pytest.mark.parametrize("expression", ["input", "steps.ocr", "steps.ocr.result", "foo.bar", "input..x"])
def test_parse_reference_rejects_unknown_forms(expression):
    with pytest.raises(TemplateResolutionError):
        parse_reference(expression)


def test_interpolates_values_into_text():
    context = TemplateContext(input={"case_id": "C-42"}, timestamp="2026-01-01T00:00:00+00:00")
    context.bind_output("ocr", {"text": "Page one", "pages": [{"n": 1}]})

    resolved = resolve(
        {
            "text": "Case {{input.case_id}}: {{ steps.ocr.output.text }}",
            "meta": ["{{timestamp}}", "page {{steps.ocr.output.pages.0.n}}"],
        },
        context,
    )

    assert resolved == {
        "text": "Case C-42: Page one",
        "meta": ["2026-01-01T00:00:00+00:00", "page 1"],
    }


def test_whole_placeholder_keeps_type():
    context = TemplateContext()
    context.bind_output("summarize", {"text": "Summary", "parties": ["A", "B"]})

    value = resolve("{{steps.summarize.output}}", context)

    assert value == {"text": "Summary", "parties": ["A", "B"]}
    value["parties"].append("C")
    assert resolve("{{steps.summarize.output.parties}}", context) == ["A", "B"]


def test_embedded_mapping_is_rendered_as_json():
    context = TemplateContext()
    context.bind_output("s", {"a": 1})
    assert resolve("Data: {{steps.s.output}}", context) == 'Data: {"a": 1}'


def test_embedded_null_is_rendered_as_null():
    context = TemplateContext(input={"judge": None})
    assert resolve("Judge: {{input.judge}}", context) == "Judge: null"
    assert resolve("{{input.judge}}", context) is None


def test_reference_to_step_without_output_fails():
    context = TemplateContext(input={"x": 1})
    with pytest.raises(TemplateResolutionError) as exc:
        resolve("{{steps.later.output.text}}", context)
    assert exc.value.placeholder == "steps.later.output.text"
    assert "{{steps.later.output.text}}" in str(exc.value)


def test_missing_path_fails_instead_of_substituting_empty():
    context = TemplateContext(input={"transcript": "..."})
    with pytest.raises(TemplateResolutionError, match="missing key 'case_id'"):
        resolve("Case {{input.case_id}}", context)


def test_outputs_are_bound_once_as_copies():
    output = {"text": "v1"}
    context = TemplateContext()
    context.bind_output("a", output)
    output["text"] = "changed"

    assert resolve("{{steps.a.output.text}}", context) == "v1"
    with pytest.raises(ValueError):
        context.bind_output("a", {"text": "v2"})


def test_reference_scanning():
    value = {"a": "{{steps.one.output}} and {{steps.two.output.x}}", "b": ["{{input.y}}", "{{bogus}}"]}
    assert referenced_steps(value) == {"one", "two"}
    assert unresolved_references(value, {"one"}) == ["steps.two.output.x", "bogus"]
