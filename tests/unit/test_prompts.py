from types import SimpleNamespace

import pytest

from hybrid_audit.llm.prompts import (
    format_array_for_prompt,
    format_headers_for_prompt,
    format_headings_for_prompt,
    format_opportunities_for_prompt,
    interpolate_prompt,
    load_prompt,
    load_system_instruction,
    render_prompt,
)


def test_load_prompt_and_system_instruction():
    assert "{{pdpUrl}}" in load_prompt("pdp")
    assert load_system_instruction("pdp").startswith("You are an E-commerce")
    # the shared output block has no system instruction
    assert load_system_instruction("finding_output_format") is None


def test_unknown_prompt_raises():
    with pytest.raises(FileNotFoundError):
        load_prompt("no_such_prompt")


def test_interpolate_renders_missing_and_none_as_na():
    template = "Title: {{title}} / Desc: {{description}} / Words: {{words}}"
    rendered = interpolate_prompt(template, {"title": None, "words": 0})
    assert rendered == "Title: N/A / Desc: N/A / Words: 0"


def test_render_prompt_appends_output_format():
    rendered = render_prompt("pdp", {"pdpUrl": "https://acme.test/p/1"})

    assert "https://acme.test/p/1" in rendered
    assert "OUTPUT FORMAT" in rendered
    assert "{{" not in rendered


def test_format_array_truncates():
    assert format_array_for_prompt([]) == "None"
    text = format_array_for_prompt([f"item {i}" for i in range(12)], max_items=10)
    assert text.startswith("1. item 0")
    assert text.endswith("... and 2 more")


def test_format_headers_keeps_relevant_only():
    text = format_headers_for_prompt({"server": "nginx", "cache-control": "no-cache"})
    assert text == "cache-control: no-cache"
    assert format_headers_for_prompt({}) == "No relevant headers found"


def test_format_headings_indents_by_level():
    headings = [SimpleNamespace(level=1, text="Widgets"), SimpleNamespace(level=2, text="Tools")]
    assert format_headings_for_prompt(headings) == "H1: Widgets\n  H2: Tools"


def test_format_opportunities_with_savings():
    opportunities = [
        SimpleNamespace(title="Eliminate render-blocking resources", savings_ms=1234.4, savings_bytes=None),
        SimpleNamespace(title="Reduce unused JavaScript", savings_ms=None, savings_bytes=20480),
    ]
    assert format_opportunities_for_prompt(opportunities) == (
        "- Eliminate render-blocking resources (potential savings: 1234ms)\n"
        "- Reduce unused JavaScript (potential savings: 20KB)"
    )
