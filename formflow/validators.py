from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterable, List, Optional

from jsonschema.validators import Draft202012Validator

from formflow.errors import InvalidPageGraph, NoPagesFound
from formflow.fallback import TERMINAL_PAGE_ID

log = logging.getLogger(__name__)

SINGLE_CHOICE = "single-choice"
MULTI_CHOICE = "multi-choice"
MIXED = "mixed"
DISPLAY_ONLY = "display-only"
INPUT_TYPES = (SINGLE_CHOICE, MULTI_CHOICE, MIXED, DISPLAY_ONLY)

DEFAULT_BUTTON_LABEL = "Continue"
DEFAULT_FORM_NAME = "Untitled Form"

_TRUTHY = {"true", "yes", "1", "required", "on"}

_INPUT_TYPE_SYNONYMS = {
    "single": SINGLE_CHOICE,
    "single_choice": SINGLE_CHOICE,
    "singlechoice": SINGLE_CHOICE,
    "radio": SINGLE_CHOICE,
    "multi": MULTI_CHOICE,
    "multi_choice": MULTI_CHOICE,
    "multichoice": MULTI_CHOICE,
    "multiple-choice": MULTI_CHOICE,
    "multiple_choice": MULTI_CHOICE,
    "checkbox": MULTI_CHOICE,
    "checkboxes": MULTI_CHOICE,
    "display": DISPLAY_ONLY,
    "display_only": DISPLAY_ONLY,
    "displayonly": DISPLAY_ONLY,
    "info": DISPLAY_ONLY,
}

PAGE_GRAPH_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["pages"],
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string"},
        "description": {"type": "string"},
        "pages": {"type": "array", "minItems": 1, "items": {"$ref": "#/$defs/page"}},
    },
    "$defs": {
        "option": {
            "type": "object",
            "required": ["id", "label", "value"],
            "properties": {
                "id": {"type": "string", "minLength": 1},
                "label": {"type": "string", "minLength": 1},
                "routeTo": {"type": "string", "minLength": 1},
                "required": {"type": "boolean"},
            },
        },
        "routeButton": {
            "type": "object",
            "required": ["label", "routeTo"],
            "properties": {
                "label": {"type": "string", "minLength": 1},
                "routeTo": {"type": "string", "minLength": 1},
            },
        },
        "page": {
            "type": "object",
            "required": ["id", "title", "inputType"],
            "properties": {
                "id": {"type": "string", "minLength": 1},
                "title": {"type": "string", "minLength": 1},
                "inputType": {"enum": list(INPUT_TYPES)},
                "options": {"type": "array", "items": {"$ref": "#/$defs/option"}},
                "routeButton": {"$ref": "#/$defs/routeButton"},
            },
        },
    },
}

_SCHEMA_VALIDATOR = Draft202012Validator(PAGE_GRAPH_SCHEMA)


def coerce_input_type(value: Any) -> str:
    """Fold common spellings onto the four page types; anything else is `mixed`."""
    if not isinstance(value, str):
        return MIXED
    key = value.strip().lower().replace(" ", "-")
    if key in INPUT_TYPES:
        return key
    return _INPUT_TYPE_SYNONYMS.get(key, MIXED)


def _resolve_page_ids(pages: List[Dict[str, Any]]) -> List[str]:
    ids: List[str] = []
    seen = set()
    for idx, page in enumerate(pages):
        raw = page.get("id")
        pid = raw.strip() if isinstance(raw, str) else (str(raw) if raw not in (None, "") else "")
        if not pid:
            pid = f"page-{idx + 1}"
        if pid in seen:
            base, n = pid, idx + 1
            pid = f"{base}-{n}"
            while pid in seen:
                n += 1
                pid = f"{base}-{n}"
        seen.add(pid)
        ids.append(pid)
    return ids


def _default_options(input_type: str, index: int, next_id: str) -> List[Dict[str, Any]]:
    if input_type == SINGLE_CHOICE:
        return [
            {"id": f"opt-{index}-1", "label": "Yes", "value": "yes", "routeTo": next_id},
            {"id": f"opt-{index}-2", "label": "No", "value": "no", "routeTo": next_id},
        ]
    if input_type == MULTI_CHOICE:
        return [
            {"id": f"opt-{index}-1", "label": "Option 1", "value": "option1"},
            {"id": f"opt-{index}-2", "label": "Option 2", "value": "option2"},
        ]
    return [
        {
            "id": f"opt-{index}-1",
            "type": "text",
            "label": "Please provide details",
            "value": "",
            "required": True,
        }
    ]


def _coerce_options(raw: Any) -> List[Dict[str, Any]]:
    """Keep mapping options, lift bare strings to `{label, value}`, drop the rest."""
    if not isinstance(raw, list):
        return []
    out: List[Dict[str, Any]] = []
    for opt in raw:
        if isinstance(opt, dict):
            out.append(opt)
        elif isinstance(opt, str) and opt.strip():
            out.append({"label": opt.strip(), "value": opt.strip()})
    return out


def _fill_button_label(button: Dict[str, Any]) -> None:
    label = button.get("label")
    if label is None or (isinstance(label, str) and not label.strip()):
        button["label"] = DEFAULT_BUTTON_LABEL
    elif not isinstance(label, str):
        button["label"] = str(label)


def _fill_option_defaults(options: List[Dict[str, Any]], page_index: int) -> List[Dict[str, Any]]:
    for opt_index, option in enumerate(options):
        required = option.get("required")
        if isinstance(required, str):
            option["required"] = required.strip().lower() in _TRUTHY
        elif "required" in option and not isinstance(required, bool):
            option["required"] = bool(required)
        if option.get("id") in (None, ""):
            option["id"] = f"opt-{page_index}-{opt_index + 1}"
        elif not isinstance(option["id"], str):
            option["id"] = str(option["id"])
        if option.get("label") in (None, ""):
            option["label"] = f"Option {opt_index + 1}"
        elif not isinstance(option["label"], str):
            option["label"] = str(option["label"])
        if option.get("value") is None:
            option["value"] = f"value-{opt_index + 1}"
    return options


def _normalize_page(page: Dict[str, Any], index: int, ids: List[str]) -> Dict[str, Any]:
    page_id = ids[index]
    is_last = index == len(ids) - 1
    next_id = TERMINAL_PAGE_ID if is_last else ids[index + 1]
    known = set(ids)

    def resolves(target: Any) -> bool:
        return isinstance(target, str) and (target in known or target == TERMINAL_PAGE_ID)

    page["id"] = page_id
    title = page.get("title")
    if title is None or (isinstance(title, str) and not title.strip()):
        page["title"] = f"Step {index + 1}"
    elif not isinstance(title, str):
        page["title"] = str(title)
    input_type = coerce_input_type(page.get("inputType"))
    page["inputType"] = input_type

    if input_type == DISPLAY_ONLY:
        page.pop("options", None)
        button = page.get("routeButton")
        if not isinstance(button, dict) or is_last or button.get("routeTo") == page_id:
            page.pop("routeButton", None)
        else:
            if not resolves(button.get("routeTo")):
                button["routeTo"] = next_id
            _fill_button_label(button)
        return page

    options = _coerce_options(page.get("options"))
    if not options:
        options = _default_options(input_type, index, next_id)

    if input_type == SINGLE_CHOICE:
        page.pop("routeButton", None)
        for option in options:
            if not resolves(option.get("routeTo")):
                option["routeTo"] = next_id
            option.pop("type", None)
            option.pop("required", None)
    else:
        for option in options:
            if "routeTo" not in option:
                continue
            if input_type == MULTI_CHOICE or not option["routeTo"]:
                option.pop("routeTo")
            elif not resolves(option["routeTo"]):
                option["routeTo"] = next_id

        button = page.get("routeButton")
        if not isinstance(button, dict):
            page["routeButton"] = {"label": DEFAULT_BUTTON_LABEL, "routeTo": next_id}
        else:
            if not button.get("routeTo"):
                if is_last:
                    page.pop("routeButton")
                else:
                    button["routeTo"] = next_id
            elif not resolves(button["routeTo"]):
                button["routeTo"] = next_id
            if "routeButton" in page:
                _fill_button_label(button)

    page["options"] = _fill_option_defaults(options, index)
    return page


def validate_and_normalize(raw: Any) -> Dict[str, Any]:
    """Repair an untrusted, parsed page graph into one that satisfies every invariant.

    - Raises NoPagesFound when `pages` is missing, not a list, or empty.
    - Never mutates `raw`; the returned dict is a deep copy.
    - "Next page" is always the page at index+1 of the incoming order, or the
      terminal marker for the last page.
    """
    if not isinstance(raw, dict):
        raise NoPagesFound("page graph must be a JSON object")
    pages = raw.get("pages")
    if not isinstance(pages, list) or not pages:
        raise NoPagesFound("No pages found in parsed JSON")

    graph = copy.deepcopy(raw)
    graph["pages"] = [p if isinstance(p, dict) else {} for p in graph["pages"]]
    ids = _resolve_page_ids(graph["pages"])
    graph["pages"] = [_normalize_page(page, idx, ids) for idx, page in enumerate(graph["pages"])]
    if not isinstance(graph.get("name"), str) or not graph["name"].strip():
        graph["name"] = DEFAULT_FORM_NAME
    if "description" in graph and not isinstance(graph["description"], str):
        graph["description"] = "" if graph["description"] is None else str(graph["description"])
    # callers assign ids; a blank or non-string one is dropped
    if "id" in graph and not (isinstance(graph["id"], str) and graph["id"].strip()):
        graph.pop("id")
    log.debug("normalized page graph pages=%d", len(ids))
    return graph


def _format_path(parts: Iterable[Any]) -> str:
    out = ""
    for part in parts:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out or "(root)"


def collect_errors(graph: Any) -> List[Dict[str, str]]:
    """
    Return a list of {"path": "...", "message": "..."} dicts, one per invariant
    violation. Schema problems are reported first; routing and per-type rules
    only run once the structure is sound.
    """
    errors: List[Dict[str, str]] = []
    for err in sorted(_SCHEMA_VALIDATOR.iter_errors(graph), key=lambda e: _format_path(e.absolute_path)):
        errors.append({"path": _format_path(err.absolute_path), "message": err.message})
    if errors:
        return errors

    pages: List[Dict[str, Any]] = graph["pages"]
    ids = [p["id"] for p in pages]
    known = set(ids)
    if len(known) != len(ids):
        errors.append({"path": "pages", "message": "page ids must be unique"})

    def check_target(path: str, target: Optional[str]) -> None:
        if target not in known and target != TERMINAL_PAGE_ID:
            errors.append({"path": path, "message": f"routeTo '{target}' does not match any page id"})

    for idx, page in enumerate(pages):
        prefix = f"pages[{idx}]"
        input_type = page["inputType"]
        is_last = idx == len(pages) - 1
        button = page.get("routeButton")
        options = page.get("options")

        if input_type == DISPLAY_ONLY:
            if "options" in page:
                errors.append({"path": f"{prefix}.options", "message": "display-only pages must not have options"})
            if button and button.get("routeTo") == page["id"]:
                errors.append({"path": f"{prefix}.routeButton", "message": "display-only page routes to itself"})
        else:
            if not options:
                errors.append({"path": f"{prefix}.options", "message": f"required property 'options' is missing or empty for {input_type}"})
                options = []
            if input_type == SINGLE_CHOICE:
                if "routeButton" in page:
                    errors.append({"path": f"{prefix}.routeButton", "message": "single-choice pages route per option, not per page"})
                for o_idx, option in enumerate(options):
                    o_path = f"{prefix}.options[{o_idx}]"
                    if "routeTo" not in option:
                        errors.append({"path": f"{o_path}.routeTo", "message": "required property 'routeTo' is missing"})
                    if "type" in option or "required" in option:
                        errors.append({"path": o_path, "message": "single-choice options carry no type/required"})
            elif input_type == MULTI_CHOICE:
                for o_idx, option in enumerate(options):
                    if "routeTo" in option:
                        errors.append({"path": f"{prefix}.options[{o_idx}].routeTo", "message": "multi-choice options must not route"})
            if input_type in (MULTI_CHOICE, MIXED) and button is None and not is_last:
                errors.append({"path": f"{prefix}.routeButton", "message": "required property 'routeButton' is missing"})

        for o_idx, option in enumerate(options or []):
            if "routeTo" in option:
                check_target(f"{prefix}.options[{o_idx}].routeTo", option["routeTo"])
        if button:
            check_target(f"{prefix}.routeButton.routeTo", button.get("routeTo"))

    return errors


def validate_graph(graph: Any) -> None:
    """Raise InvalidPageGraph if `graph` violates any invariant."""
    errs = collect_errors(graph)
    if errs:
        raise InvalidPageGraph(errs)
