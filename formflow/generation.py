from __future__ import annotations

import logging
import os
import random
import string
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from formflow import llm_prompts
from formflow.edits import (
    EditRequest,
    FeedbackEditRequest,
    apply_explicit_edits,
    describe,
    edit_type,
    feedback_to_edit_request,
    needs_generation,
)
from formflow.errors import (
    AnalysisFailed,
    FormflowError,
    GenerationFailed,
    GeneratorError,
    NoPagesFound,
)
from formflow.llm_client import GeneratorClient, get_generator
from formflow.llm_parsing import parse_json_object, parse_page_graph, snippet
from formflow.validators import validate_and_normalize, validate_graph

log = logging.getLogger(__name__)

try:
    MAX_ATTEMPTS = max(1, int(os.getenv("FORM_MAX_ATTEMPTS", "3")))
except Exception:
    MAX_ATTEMPTS = 3
try:
    BACKOFF_SECS = float(os.getenv("FORM_BACKOFF_SECS", "1.0"))
except Exception:
    BACKOFF_SECS = 1.0
try:
    MIN_PAGES = int(os.getenv("FORM_MIN_PAGES", "20"))
except Exception:
    MIN_PAGES = 20

FORM_MAX_TOKENS = 4095
FORM_TEMPERATURE = 0.05
ANALYSIS_MAX_TOKENS = 1500
ANALYSIS_TEMPERATURE = 0.1

PRIORITIES = ("low", "medium", "high", "urgent")

Sleep = Callable[[float], None]


def new_form_id() -> str:
    return f"form-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_claim_number() -> str:
    """`EXP-<last 6 digits of epoch ms>-<4 upper-case alphanumerics>`."""
    millis = str(int(time.time() * 1000))[-6:]
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"EXP-{millis}-{suffix}"


def _resolve_client(client: Optional[GeneratorClient]) -> GeneratorClient:
    resolved = client if client is not None else get_generator()
    if resolved is None:
        raise GeneratorError("No AI generator configured")
    return resolved


def _run_attempts(
    user_prompt: str,
    intent: str,
    client: GeneratorClient,
    sleep: Sleep,
    action: str,
) -> Dict[str, Any]:
    """Call the generator until one response survives parse, normalize and check.

    Attempts run one after another; the backoff grows linearly and is skipped
    after the final attempt. The returned graph has no `id`.
    """
    attempts = MAX_ATTEMPTS
    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        raw = ""
        try:
            raw = client.generate(
                llm_prompts.FORM_SYSTEM_PROMPT,
                user_prompt,
                max_tokens=FORM_MAX_TOKENS,
                temperature=FORM_TEMPERATURE,
            )
            graph = parse_page_graph(raw, intent)
            graph.pop("id", None)
            validate_graph(graph)
        except FormflowError as e:
            last_error = e
            log.warning("%s attempt %d/%d failed: %s raw=%r", action, attempt, attempts, e, snippet(raw))
            if attempt < attempts:
                sleep(BACKOFF_SECS * attempt)
            continue
        log.info("%s succeeded on attempt %d pages=%d", action, attempt, len(graph["pages"]))
        return graph
    raise GenerationFailed(attempts, last_error, action)


def generate_graph(
    intent: str,
    context: Optional[str] = None,
    *,
    client: Optional[GeneratorClient] = None,
    sleep: Sleep = time.sleep,
) -> Dict[str, Any]:
    """Turn a natural-language intent into a stamped, validated page graph.

    Raises ValueError for a blank intent, GeneratorError when no generator is
    configured and GenerationFailed once every attempt has failed.
    """
    if not isinstance(intent, str) or not intent.strip():
        raise ValueError("userIntent is required")
    gen = _resolve_client(client)
    prompt = llm_prompts.build_form_generation_prompt(intent, context, MIN_PAGES)
    graph = _run_attempts(prompt, intent, gen, sleep, "generate form")
    return {"id": new_form_id(), **graph, "createdAt": utc_now_iso(), "generatedFrom": intent}


def edit_graph(
    existing: Dict[str, Any],
    edit: Union[EditRequest, Dict[str, Any]],
    clone: bool = False,
    *,
    client: Optional[GeneratorClient] = None,
    sleep: Sleep = time.sleep,
) -> Dict[str, Any]:
    """Apply an edit request to `existing` and return the new graph.

    `existing` is not mutated. An edit keeps the graph id and creation time; a
    clone gets a fresh id and createdAt and starts its own history.
    """
    req = edit if isinstance(edit, EditRequest) else EditRequest.model_validate(edit or {})
    local = apply_explicit_edits(existing, req)
    intent = req.newIntent or existing.get("generatedFrom") or existing.get("name") or ""
    action = "clone and edit form" if clone else "edit form"

    if needs_generation(req):
        gen = _resolve_client(client)
        prompt = llm_prompts.build_form_edit_prompt(local, req.model_dump(), MIN_PAGES)
        result = _run_attempts(prompt, intent, gen, sleep, action)
    else:
        try:
            result = validate_and_normalize(local)
        except NoPagesFound as e:
            raise GenerationFailed(1, e, action) from e
        result.pop("id", None)

    now = utc_now_iso()
    entry = {"editedAt": now, "editType": edit_type(req), "description": describe(req)}
    if clone:
        entry["description"] = f"cloned from {existing.get('id')}: {entry['description']}"
        out = {"id": new_form_id(), **result, "createdAt": now, "editHistory": [entry]}
    else:
        history = list(existing.get("editHistory") or [])
        history.append(entry)
        out = {"id": existing.get("id") or new_form_id(), **result, "editHistory": history}
        if existing.get("createdAt"):
            out["createdAt"] = existing["createdAt"]
    out["generatedFrom"] = req.newIntent or existing.get("generatedFrom") or intent
    if "styles" in existing and "styles" not in out:
        out["styles"] = existing["styles"]
    out["lastEditedAt"] = now
    return out


def edit_stored_graph(
    store,
    graph_id: str,
    edit: Union[EditRequest, Dict[str, Any]],
    clone: bool = False,
    *,
    client: Optional[GeneratorClient] = None,
    sleep: Sleep = time.sleep,
) -> Dict[str, Any]:
    """Load, edit and persist. Raises NotFound for an unknown id."""
    existing = store.require(graph_id)
    result = edit_graph(existing, edit, clone, client=client, sleep=sleep)
    store.put(result["id"], result)
    log.info("%s %s -> %s", "cloned" if clone else "edited", graph_id, result["id"])
    return result


def diff_page_ids(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, List[str]]:
    old_ids = [p.get("id") for p in before.get("pages") or []]
    new_ids = [p.get("id") for p in after.get("pages") or []]
    old_set, new_set = set(old_ids), set(new_ids)
    return {
        "pagesAdded": [pid for pid in new_ids if pid not in old_set],
        "pagesRemoved": [pid for pid in old_ids if pid not in new_set],
    }


def apply_feedback(
    store,
    graph_id: str,
    feedback: FeedbackEditRequest,
    *,
    client: Optional[GeneratorClient] = None,
    sleep: Sleep = time.sleep,
) -> Dict[str, Any]:
    """Feedback-driven edit of a stored graph plus a summary of what moved."""
    existing = store.require(graph_id)
    edited = edit_stored_graph(store, graph_id, feedback_to_edit_request(feedback), client=client, sleep=sleep)
    moved = diff_page_ids(existing, edited)
    return {
        "success": True,
        "message": "Form updated successfully based on feedback",
        "editedForm": edited,
        "modifications": {
            "pagesModified": [f.pageId for f in feedback.pageSpecificFeedback or []],
            "pagesAdded": moved["pagesAdded"],
            "pagesRemoved": moved["pagesRemoved"],
            "generalChanges": [feedback.generalFeedback] if feedback.generalFeedback else [],
        },
    }


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def analyze_submission(
    graph: Dict[str, Any],
    responses: Dict[str, Any],
    *,
    client: Optional[GeneratorClient] = None,
) -> Dict[str, Any]:
    """Ask the generator for a structured reading of a submission.

    Raises AnalysisFailed when there is no generator, the call fails or the
    reply cannot be parsed.
    """
    try:
        gen = _resolve_client(client)
        prompt = llm_prompts.build_submission_analysis_prompt(graph.get("id", ""), responses, graph.get("name", ""))
        raw = gen.generate(
            llm_prompts.ANALYSIS_SYSTEM_PROMPT,
            prompt,
            max_tokens=ANALYSIS_MAX_TOKENS,
            temperature=ANALYSIS_TEMPERATURE,
        )
        doc = parse_json_object(raw)
    except FormflowError as e:
        log.warning("submission analysis failed for %s: %s", graph.get("id"), e)
        raise AnalysisFailed(f"Failed to process submission: {e}") from e

    insights = doc.get("insights")
    if isinstance(insights, str):
        insights = [insights]
    elif not isinstance(insights, list):
        insights = []
    priority = _as_text(doc.get("priority")).strip().lower()
    return {
        "summary": _as_text(doc.get("summary")),
        "nextSteps": _as_text(doc.get("nextSteps")),
        "dataQuality": _as_text(doc.get("dataQuality")),
        "insights": [_as_text(i) for i in insights if i not in (None, "")],
        "priority": priority if priority in PRIORITIES else "medium",
    }
