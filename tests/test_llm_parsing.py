import json

import pytest

from formflow import llm_parsing
from formflow.errors import InvalidGeneratorOutput, JsonSyntaxError, NoJsonFound


SCENARIO_A = (
    "Here is the form:\n```json\n"
    '{"pages":[{"id":"page-1","title":"T","inputType":"single-choice","options":[{"label":"Yes","value":"y"}]}]}'
    "\n```"
)


def test_extract_strips_fences_and_prose():
    out = llm_parsing.extract_json_object(SCENARIO_A)
    assert out.startswith("{") and out.endswith("}")
    assert json.loads(out)["pages"][0]["id"] == "page-1"


def test_extract_drops_blank_lines():
    out = llm_parsing.extract_json_object('{\n\n  "a": 1,\n   \n  "b": 2\n}')
    assert "\n\n" not in out
    assert json.loads(out) == {"a": 1, "b": 2}


@pytest.mark.parametrize("text", ["", "no json here", "} backwards {"])
def test_extract_raises_without_object(text):
    with pytest.raises(NoJsonFound):
        llm_parsing.extract_json_object(text)


def test_remove_trailing_commas():
    assert llm_parsing.remove_trailing_commas('{"a": [1, 2,], }') == '{"a": [1, 2]}'


def test_remove_trailing_commas_leaves_strings_alone():
    text = '{"a": "x,}", "b": 1}'
    assert llm_parsing.remove_trailing_commas(text) == text


def test_close_route_buttons_injects_terminal_target():
    text = '{"routeButton": {"label": "Next"}}'
    fixed = llm_parsing.close_route_buttons(text)
    assert json.loads(fixed) == {"routeButton": {"label": "Next", "routeTo": "page-end"}}


def test_close_route_buttons_ignores_complete_buttons():
    text = '{"routeButton": {"label": "Next", "routeTo": "page-2"}}'
    assert llm_parsing.close_route_buttons(text) == text


def test_quote_bare_keys():
    fixed = llm_parsing.quote_bare_keys('{name: "x", pages: []}')
    assert json.loads(fixed) == {"name": "x", "pages": []}


def test_quote_bare_keys_skips_string_contents():
    text = '{"a": "{foo: 1}"}'
    assert llm_parsing.quote_bare_keys(text) == text


def test_repair_rules_compose():
    broken = '{name: "Trip", pages: [{"id": "page-1", "routeButton": {"label": "Go",},},],}'
    doc = json.loads(llm_parsing.repair_json_syntax(broken))
    assert doc["name"] == "Trip"
    assert doc["pages"][0]["routeButton"] == {"label": "Go", "routeTo": "page-end"}


def test_loads_object_rejects_non_objects():
    with pytest.raises(JsonSyntaxError):
        llm_parsing.loads_object("[1, 2]")
    with pytest.raises(JsonSyntaxError):
        llm_parsing.loads_object('{"a": }')


def test_parse_page_graph_scenario_a():
    graph = llm_parsing.parse_page_graph(SCENARIO_A)
    page = graph["pages"][0]
    assert page["options"][0]["id"] == "opt-0-1"
    assert page["options"][0]["routeTo"] == "page-end"
    assert "routeButton" not in page


def test_emergency_reconstruct_uses_fallback_when_pages_fragment_present():
    truncated = '{"name": "Trip", "pages": [{"id": "page-1", "options": ["a", "b"], "title": '
    graph = llm_parsing.parse_page_graph(truncated, "learn spanish")
    assert graph["name"] == "Learning Path Assistant"
    assert [p["inputType"] for p in graph["pages"]] == ["single-choice", "mixed", "display-only"]


def test_emergency_reconstruct_after_syntax_error():
    bad = '{"pages": [1, 2] "x" }'
    graph = llm_parsing.parse_page_graph(bad, "plan my week")
    assert graph["name"] == "Planning Assistant"


def test_emergency_reconstruct_without_fragment_raises():
    with pytest.raises(InvalidGeneratorOutput):
        llm_parsing.parse_page_graph('{"name": "x", "oops": {')


def test_emergency_reconstruct_direct():
    with pytest.raises(InvalidGeneratorOutput):
        llm_parsing.emergency_reconstruct("nothing useful")
    graph = llm_parsing.emergency_reconstruct('"pages": []', "")
    assert graph["pages"][0]["title"] == "How can we help you today?"


def test_snippet_truncates_middle():
    text = "a" * 300 + "b" * 300
    out = llm_parsing.snippet(text, size=10)
    assert out == "a" * 10 + " ... " + "b" * 10
    assert llm_parsing.snippet("short") == "short"
