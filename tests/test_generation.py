import json
import re

import pytest

from formflow import generation
from formflow.errors import GenerationFailed, GeneratorError, InvalidGeneratorOutput, NoPagesFound, NotFound
from formflow.store import MemoryStore


class FakeGenerator:
    """Replays canned replies; an Exception instance is raised instead of returned."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def generate(self, system_prompt, user_prompt, max_tokens, temperature):
        self.calls.append({"system": system_prompt, "user": user_prompt, "max_tokens": max_tokens, "temperature": temperature})
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


VALID_GRAPH = {
    "id": "generator-chosen-id",
    "name": "Trip Planner",
    "description": "Plan a trip",
    "pages": [
        {
            "id": "page-1",
            "title": "Where to?",
            "inputType": "single-choice",
            "options": [
                {"id": "o1", "label": "Beach", "value": "beach", "routeTo": "page-2"},
                {"id": "o2", "label": "City", "value": "city", "routeTo": "page-3"},
            ],
        },
        {
            "id": "page-2",
            "title": "Beach details",
            "inputType": "mixed",
            "options": [{"id": "b1", "type": "text", "label": "Which beach?", "value": "", "required": True}],
            "routeButton": {"label": "Continue", "routeTo": "page-3"},
        },
        {"id": "page-3", "title": "Thanks", "inputType": "display-only"},
    ],
}

STORED = {
    "id": "form-1",
    "name": "Trip Planner",
    "createdAt": "2024-01-01T00:00:00.000Z",
    "generatedFrom": "plan a trip",
    "pages": [dict(p) for p in VALID_GRAPH["pages"]],
}


@pytest.fixture(autouse=True)
def _attempt_settings(monkeypatch):
    monkeypatch.setattr(generation, "MAX_ATTEMPTS", 3)
    monkeypatch.setattr(generation, "BACKOFF_SECS", 1.0)
    monkeypatch.setattr(generation, "MIN_PAGES", 20)


def test_generate_graph_stamps_metadata():
    gen = FakeGenerator(json.dumps(VALID_GRAPH))
    sleeps = []
    graph = generation.generate_graph("plan a trip", client=gen, sleep=sleeps.append)
    assert re.match(r"^form-\d+-[0-9a-f]{8}$", graph["id"])
    assert graph["generatedFrom"] == "plan a trip"
    assert graph["createdAt"].endswith("Z")
    assert [p["id"] for p in graph["pages"]] == ["page-1", "page-2", "page-3"]
    assert sleeps == []
    call = gen.calls[0]
    assert call["max_tokens"] == 4095
    assert call["temperature"] == 0.05
    assert 'Create a decision tree form for: "plan a trip"' in call["user"]
    assert "MINIMUM 20 pages" in call["user"]


def test_generate_graph_passes_context():
    gen = FakeGenerator(json.dumps(VALID_GRAPH))
    generation.generate_graph("plan a trip", "family of four", client=gen, sleep=lambda s: None)
    assert "Additional context: family of four" in gen.calls[0]["user"]


def test_generate_graph_retries_with_linear_backoff():
    gen = FakeGenerator(GeneratorError("HTTP 502"), "sorry, I cannot help", json.dumps(VALID_GRAPH))
    sleeps = []
    graph = generation.generate_graph("plan a trip", client=gen, sleep=sleeps.append)
    assert graph["name"] == "Trip Planner"
    assert len(gen.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_generate_graph_gives_up_after_three_attempts():
    gen = FakeGenerator('{"name": "x", "oops": {')
    sleeps = []
    with pytest.raises(GenerationFailed) as exc:
        generation.generate_graph("plan a trip", client=gen, sleep=sleeps.append)
    assert exc.value.attempts == 3
    assert isinstance(exc.value.last_error, InvalidGeneratorOutput)
    assert "Failed to generate form after 3 attempts" in str(exc.value)
    assert len(gen.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_generate_graph_calls_three_times_on_generator_errors():
    gen = FakeGenerator(GeneratorError("HTTP 503"))
    with pytest.raises(GenerationFailed) as exc:
        generation.generate_graph("plan a trip", client=gen, sleep=lambda s: None)
    assert len(gen.calls) == 3
    assert isinstance(exc.value.last_error, GeneratorError)


@pytest.mark.parametrize("extra", [{"description": None}, {"id": 42}, {"description": 7}, {"id": ""}])
def test_generate_graph_tolerates_odd_top_level_fields(extra):
    gen = FakeGenerator(json.dumps(dict(VALID_GRAPH, **extra)))
    graph = generation.generate_graph("plan a trip", client=gen, sleep=lambda s: None)
    assert len(gen.calls) == 1
    assert isinstance(graph["id"], str) and graph["id"].startswith("form-")
    assert isinstance(graph["description"], str)


def test_generate_graph_reports_last_error():
    gen = FakeGenerator('{"name": "x", "pages": []}')
    with pytest.raises(GenerationFailed) as exc:
        generation.generate_graph("plan a trip", client=gen, sleep=lambda s: None)
    assert isinstance(exc.value.last_error, NoPagesFound)


def test_generate_graph_rejects_blank_intent():
    with pytest.raises(ValueError):
        generation.generate_graph("   ", client=FakeGenerator("{}"))


def test_generate_graph_without_generator(monkeypatch):
    monkeypatch.setattr(generation, "get_generator", lambda: None)
    with pytest.raises(GeneratorError):
        generation.generate_graph("plan a trip")


def test_edit_without_generator_keeps_identity():
    gen = FakeGenerator("unused")
    edit = {"pageModifications": [{"pageId": "page-1", "newTitle": "Pick a destination"}]}
    out = generation.edit_graph(STORED, edit, client=gen)
    assert gen.calls == []
    assert out["id"] == "form-1"
    assert out["createdAt"] == STORED["createdAt"]
    assert out["generatedFrom"] == "plan a trip"
    assert out["pages"][0]["title"] == "Pick a destination"
    assert out["lastEditedAt"].endswith("Z")
    assert out["editHistory"][-1]["editType"] == "modify"
    assert STORED["pages"][0]["title"] == "Where to?"


def test_edit_removing_a_page_repairs_routes():
    out = generation.edit_graph(STORED, {"removePageIds": ["page-2"]}, client=FakeGenerator("unused"))
    assert [p["id"] for p in out["pages"]] == ["page-1", "page-3"]
    assert out["pages"][0]["options"][0]["routeTo"] == "page-3"
    assert out["editHistory"][-1]["editType"] == "remove_pages"


def test_clone_gets_new_identity():
    out = generation.edit_graph(STORED, {}, clone=True, client=FakeGenerator("unused"))
    assert out["id"] != "form-1"
    assert out["createdAt"] != STORED["createdAt"]
    assert len(out["editHistory"]) == 1
    assert out["editHistory"][0]["description"].startswith("cloned from form-1")


def test_edit_with_hints_uses_generator():
    edited = dict(VALID_GRAPH, name="Trip Planner v2")
    gen = FakeGenerator(json.dumps(edited))
    out = generation.edit_graph(STORED, {"modificationHints": ["Use friendlier wording"]}, client=gen, sleep=lambda s: None)
    assert len(gen.calls) == 1
    assert "CURRENT FORM:" in gen.calls[0]["user"]
    assert "- Use friendlier wording" in gen.calls[0]["user"]
    assert out["name"] == "Trip Planner v2"
    assert out["id"] == "form-1"


def test_edit_generation_failure_names_the_action():
    gen = FakeGenerator("not json")
    with pytest.raises(GenerationFailed) as exc:
        generation.edit_graph(STORED, {"newIntent": "plan a ski trip"}, client=gen, sleep=lambda s: None)
    assert "Failed to edit form after 3 attempts" in str(exc.value)


def test_edit_stored_graph_persists_and_raises_not_found():
    store = MemoryStore()
    store.put("form-1", STORED)
    out = generation.edit_stored_graph(store, "form-1", {"pageModifications": [{"pageId": "page-3", "newTitle": "Bye"}]})
    assert store.get("form-1")["pages"][2]["title"] == "Bye"
    assert out["id"] == "form-1"
    with pytest.raises(NotFound):
        generation.edit_stored_graph(store, "missing", {})


def test_apply_feedback_reports_modifications():
    store = MemoryStore()
    store.put("form-1", STORED)
    trimmed = dict(VALID_GRAPH, pages=VALID_GRAPH["pages"][:1] + VALID_GRAPH["pages"][2:])
    gen = FakeGenerator(json.dumps(trimmed))
    from formflow.edits import FeedbackEditRequest

    feedback = FeedbackEditRequest(pageSpecificFeedback=[{"pageId": "page-2", "feedbacks": ["Not needed"]}])
    result = generation.apply_feedback(store, "form-1", feedback, client=gen, sleep=lambda s: None)
    assert result["success"] is True
    assert result["modifications"]["pagesModified"] == ["page-2"]
    assert result["modifications"]["pagesRemoved"] == ["page-2"]
    assert result["modifications"]["pagesAdded"] == []
    assert "On page page-2: Not needed" in gen.calls[0]["user"]


def test_diff_page_ids():
    before = {"pages": [{"id": "a"}, {"id": "b"}]}
    after = {"pages": [{"id": "b"}, {"id": "c"}]}
    assert generation.diff_page_ids(before, after) == {"pagesAdded": ["c"], "pagesRemoved": ["a"]}


def test_analyze_submission_coerces_fields():
    reply = "```json\n" + json.dumps({"summary": "ok", "insights": "one", "priority": "CRITICAL"}) + "\n```"
    gen = FakeGenerator(reply)
    out = generation.analyze_submission(STORED, {"page-1": "beach"}, client=gen)
    assert out == {"summary": "ok", "nextSteps": "", "dataQuality": "", "insights": ["one"], "priority": "medium"}
    assert gen.calls[0]["max_tokens"] == 1500
    assert gen.calls[0]["temperature"] == 0.1


def test_analyze_submission_failure():
    with pytest.raises(generation.AnalysisFailed):
        generation.analyze_submission(STORED, {}, client=FakeGenerator(GeneratorError("down")))


def test_claim_number_shape():
    assert re.match(r"^EXP-\d{6}-[A-Z0-9]{4}$", generation.make_claim_number())
