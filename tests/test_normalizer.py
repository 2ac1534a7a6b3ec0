import copy

import pytest

from formflow.errors import InvalidPageGraph, NoPagesFound
from formflow.fallback import build_fallback_graph
from formflow.validators import collect_errors, coerce_input_type, validate_and_normalize, validate_graph


def _graph(*pages, **extra):
    return {"name": "Test", "pages": list(pages), **extra}


def test_scenario_b_display_only_drops_options_and_self_route():
    raw = {"pages": [{"inputType": "display-only", "options": [{"id": "x"}], "routeButton": {"label": "Next", "routeTo": "page-1"}}]}
    page = validate_and_normalize(raw)["pages"][0]
    assert page["id"] == "page-1"
    assert "options" not in page
    assert "routeButton" not in page


def test_display_only_self_route_dropped_mid_graph():
    raw = _graph(
        {"id": "a", "title": "Info", "inputType": "display-only", "routeButton": {"label": "Again", "routeTo": "a"}},
        {"id": "b", "title": "End", "inputType": "display-only"},
    )
    out = validate_and_normalize(raw)
    assert "routeButton" not in out["pages"][0]


def test_scenario_d_last_page_button_without_target_is_removed():
    raw = _graph(
        {"id": "p1", "title": "Pick", "inputType": "multi-choice", "options": [{"id": "o", "label": "A", "value": "a"}], "routeButton": {"label": "Go"}},
    )
    page = validate_and_normalize(raw)["pages"][0]
    assert "routeButton" not in page
    assert collect_errors(validate_and_normalize(raw)) == []


def test_button_without_target_mid_graph_gets_next_page():
    raw = _graph(
        {"id": "p1", "title": "Pick", "inputType": "multi-choice", "options": [{"label": "A", "value": "a"}], "routeButton": {"label": "Go"}},
        {"id": "p2", "title": "Done", "inputType": "display-only"},
    )
    page = validate_and_normalize(raw)["pages"][0]
    assert page["routeButton"] == {"label": "Go", "routeTo": "p2"}


def test_missing_pages_raise():
    for raw in ({}, {"pages": []}, {"pages": "nope"}, [], None):
        with pytest.raises(NoPagesFound):
            validate_and_normalize(raw)


def test_normalizer_does_not_mutate_input():
    raw = _graph({"title": "Q", "inputType": "single-choice", "options": [{"label": "Yes"}]})
    before = copy.deepcopy(raw)
    validate_and_normalize(raw)
    assert raw == before


def test_page_ids_are_synthesized_and_deduplicated():
    raw = _graph(
        {"title": "one", "inputType": "display-only"},
        {"id": "x", "title": "two", "inputType": "display-only"},
        {"id": "x", "title": "three", "inputType": "display-only"},
    )
    ids = [p["id"] for p in validate_and_normalize(raw)["pages"]]
    assert ids == ["page-1", "x", "x-3"]


def test_renamed_page_id_never_collides():
    raw = _graph(
        {"id": "a", "title": "one", "inputType": "display-only"},
        {"id": "a-3", "title": "two", "inputType": "display-only"},
        {"id": "a", "title": "three", "inputType": "display-only"},
    )
    out = validate_and_normalize(raw)
    assert [p["id"] for p in out["pages"]] == ["a", "a-3", "a-4"]
    assert collect_errors(out) == []


def test_single_choice_defaults_and_stripping():
    raw = _graph(
        {"id": "q", "title": "Q", "inputType": "single-choice", "routeButton": {"label": "x", "routeTo": "end"},
         "options": [{"label": "Yes", "value": "y", "type": "text", "required": True, "routeTo": "nowhere"}]},
        {"id": "end", "title": "Bye", "inputType": "display-only"},
    )
    page = validate_and_normalize(raw)["pages"][0]
    assert "routeButton" not in page
    opt = page["options"][0]
    assert opt["routeTo"] == "end"
    assert "type" not in opt and "required" not in opt


@pytest.mark.parametrize(
    "input_type,labels",
    [("single-choice", ["Yes", "No"]), ("multi-choice", ["Option 1", "Option 2"]), ("mixed", ["Please provide details"])],
)
def test_empty_options_are_synthesized(input_type, labels):
    raw = _graph({"id": "p", "title": "P", "inputType": input_type, "options": []})
    page = validate_and_normalize(raw)["pages"][0]
    assert [o["label"] for o in page["options"]] == labels
    if input_type == "mixed":
        assert page["options"][0] == {"id": "opt-0-1", "type": "text", "label": "Please provide details", "value": "", "required": True}


def test_multi_choice_options_lose_route():
    raw = _graph(
        {"id": "p", "title": "P", "inputType": "multi-choice", "options": [{"label": "A", "value": "a", "routeTo": "q"}]},
        {"id": "q", "title": "Q", "inputType": "display-only"},
    )
    page = validate_and_normalize(raw)["pages"][0]
    assert "routeTo" not in page["options"][0]
    assert page["routeButton"] == {"label": "Continue", "routeTo": "q"}


def test_dangling_routes_are_rewritten_to_next_page():
    raw = _graph(
        {"id": "p1", "title": "P", "inputType": "mixed", "options": [{"label": "A", "value": "a"}], "routeButton": {"label": "Go", "routeTo": "ghost"}},
        {"id": "p2", "title": "Q", "inputType": "display-only", "routeButton": {"label": "More", "routeTo": "ghost"}},
        {"id": "p3", "title": "R", "inputType": "display-only"},
    )
    out = validate_and_normalize(raw)
    assert out["pages"][0]["routeButton"]["routeTo"] == "p2"
    assert out["pages"][1]["routeButton"]["routeTo"] == "p3"
    assert collect_errors(out) == []


def test_option_defaults_and_string_options():
    raw = _graph({"id": "p", "title": "P", "inputType": "multi-choice", "options": ["Red", {"value": None}, 42]})
    opts = validate_and_normalize(raw)["pages"][0]["options"]
    assert opts[0] == {"id": "opt-0-1", "label": "Red", "value": "Red"}
    assert opts[1] == {"id": "opt-0-2", "label": "Option 2", "value": "value-2"}
    assert len(opts) == 2


def test_unknown_and_synonym_input_types():
    assert coerce_input_type("radio") == "single-choice"
    assert coerce_input_type("Multiple Choice") == "multi-choice"
    assert coerce_input_type("info") == "display-only"
    assert coerce_input_type("slider") == "mixed"
    assert coerce_input_type(None) == "mixed"


def test_name_and_title_defaults():
    out = validate_and_normalize({"pages": [{}]})
    assert out["name"] == "Untitled Form"
    assert out["pages"][0]["title"] == "Step 1"
    assert "id" not in out


def test_non_dict_pages_become_empty_pages():
    out = validate_and_normalize({"pages": ["junk", None]})
    assert [p["id"] for p in out["pages"]] == ["page-1", "page-2"]
    assert collect_errors(out) == []


def test_normalizer_is_idempotent():
    raw = _graph(
        {"title": "Start", "inputType": "radio", "options": [{"label": "A"}, {"label": "B", "routeTo": "page-3"}]},
        {"title": "Details", "inputType": "mixed", "options": [{"label": "Name", "type": "text"}]},
        {"title": "Extras", "inputType": "checkbox", "options": ["x", "y"]},
        {"title": "Done", "inputType": "display-only", "routeButton": {"label": "Restart", "routeTo": "page-1"}},
    )
    once = validate_and_normalize(raw)
    assert validate_and_normalize(once) == once
    assert collect_errors(once) == []


def test_fallback_graph_is_valid_and_stable():
    graph = build_fallback_graph("anything")
    assert collect_errors(graph) == []
    assert validate_and_normalize(graph)["pages"] == graph["pages"]


def test_collect_errors_reports_each_violation():
    bad = _graph(
        {"id": "a", "title": "A", "inputType": "single-choice", "options": [{"id": "o", "label": "x", "value": "x"}],
         "routeButton": {"label": "Go", "routeTo": "b"}},
        {"id": "a", "title": "B", "inputType": "display-only", "options": []},
        {"id": "c", "title": "C", "inputType": "multi-choice", "options": [{"id": "o", "label": "x", "value": "x", "routeTo": "zzz"}]},
    )
    errors = collect_errors(bad)
    messages = " | ".join(e["message"] for e in errors)
    assert "unique" in messages
    assert "single-choice pages route per option" in messages
    assert "required property 'routeTo' is missing" in messages
    assert "display-only pages must not have options" in messages
    assert "multi-choice options must not route" in messages
    assert "'zzz' does not match any page id" in messages
    with pytest.raises(InvalidPageGraph) as exc:
        validate_graph(bad)
    assert exc.value.errors == errors


def test_collect_errors_schema_pass():
    errors = collect_errors({"pages": [{"id": "p", "inputType": "bogus"}]})
    paths = {e["path"] for e in errors}
    assert "pages[0]" in paths
    assert "pages[0].inputType" in paths


def test_wrongly_typed_fields_are_coerced():
    raw = {
        "name": "Typed",
        "description": 7,
        "id": 42,
        "pages": [
            {"id": "p1", "title": "P", "inputType": "mixed",
             "options": [{"label": "x", "required": "yes"}, {"label": "y", "required": "no"}, {"label": "z", "required": 0}],
             "routeButton": {"label": 5, "routeTo": "p2"}},
            {"id": "p2", "title": "Q", "inputType": "display-only", "routeButton": {"label": 3, "routeTo": "p3"}},
            {"id": "p3", "title": "R", "inputType": "multi-choice", "options": ["a"], "routeButton": {"label": "   "}},
        ],
    }
    out = validate_and_normalize(raw)
    assert collect_errors(out) == []
    assert "id" not in out
    assert out["description"] == "7"
    assert [o["required"] for o in out["pages"][0]["options"]] == [True, False, False]
    assert out["pages"][0]["routeButton"] == {"label": "5", "routeTo": "p2"}
    assert out["pages"][1]["routeButton"]["label"] == "3"
    assert validate_and_normalize({"description": None, "pages": [{}]})["description"] == ""
