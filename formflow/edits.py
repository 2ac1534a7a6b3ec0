from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

log = logging.getLogger(__name__)

PageType = Literal["single-choice", "multi-choice", "mixed", "display-only"]


class RouteButton(BaseModel):
    id: Optional[str] = None
    label: str = "Continue"
    routeTo: str


class DisplayItem(BaseModel):
    type: Literal["info", "success", "warning", "error"] = "info"
    text: str


class OptionModification(BaseModel):
    optionId: str
    newLabel: Optional[str] = None
    newValue: Optional[str] = None
    newRouteTo: Optional[str] = None
    newRequired: Optional[bool] = None
    newType: Optional[str] = None


class PageModification(BaseModel):
    pageId: str
    newTitle: Optional[str] = None
    newInputType: Optional[PageType] = None
    optionModifications: List[OptionModification] = Field(default_factory=list)
    addOptions: List[Dict[str, Any]] = Field(default_factory=list)
    removeOptionIds: List[str] = Field(default_factory=list)
    newRouteButton: Optional[RouteButton] = None
    removeRouteButton: bool = False
    newDisplayContent: Optional[List[DisplayItem]] = None


class AddPageRequest(BaseModel):
    afterPageId: Optional[str] = None
    beforePageId: Optional[str] = None
    suggestedTitle: Optional[str] = None
    suggestedInputType: Optional[PageType] = None
    suggestedOptions: List[str] = Field(default_factory=list)
    purpose: Optional[str] = None


class EditRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    newIntent: Optional[str] = None
    newContext: Optional[str] = None
    pageModifications: List[PageModification] = Field(default_factory=list)
    addPages: List[AddPageRequest] = Field(default_factory=list)
    removePageIds: List[str] = Field(default_factory=list)
    regeneratePageIds: List[str] = Field(default_factory=list)
    regenerateAll: bool = False
    modificationHints: List[str] = Field(default_factory=list)
    preserveStructure: bool = False
    preservePageCount: bool = False
    minPages: Optional[int] = Field(default=None, ge=1)


class PageFeedback(BaseModel):
    pageId: str
    pageTitle: str = ""
    feedbacks: List[str] = Field(default_factory=list)


class FeedbackEditRequest(BaseModel):
    pageSpecificFeedback: Optional[List[PageFeedback]] = None
    generalFeedback: Optional[str] = None


def needs_generation(edit: EditRequest) -> bool:
    """True when the edit can only be satisfied by another generator pass."""
    return bool(
        (edit.newIntent and edit.newIntent.strip())
        or (edit.newContext and edit.newContext.strip())
        or edit.regenerateAll
        or edit.regeneratePageIds
        or edit.modificationHints
        or any(add.purpose for add in edit.addPages)
    )


def edit_type(edit: EditRequest) -> str:
    """History label: regenerate | add_pages | remove_pages | modify."""
    if edit.newIntent or edit.regenerateAll or edit.regeneratePageIds:
        return "regenerate"
    if edit.addPages and not edit.pageModifications and not edit.removePageIds:
        return "add_pages"
    if edit.removePageIds and not edit.pageModifications and not edit.addPages:
        return "remove_pages"
    return "modify"


def describe(edit: EditRequest) -> str:
    parts: List[str] = []
    if edit.newIntent:
        parts.append(f"new intent: {edit.newIntent}")
    if edit.regenerateAll:
        parts.append("regenerated all pages")
    elif edit.regeneratePageIds:
        parts.append(f"regenerated {', '.join(edit.regeneratePageIds)}")
    if edit.pageModifications:
        parts.append(f"modified {len(edit.pageModifications)} page(s)")
    if edit.addPages:
        parts.append(f"added {len(edit.addPages)} page(s)")
    if edit.removePageIds:
        parts.append(f"removed {', '.join(edit.removePageIds)}")
    if edit.modificationHints:
        parts.append("; ".join(edit.modificationHints))
    return ", ".join(parts) or "no changes"


def _apply_option_modification(option: Dict[str, Any], mod: OptionModification) -> None:
    if mod.newLabel is not None:
        option["label"] = mod.newLabel
    if mod.newValue is not None:
        option["value"] = mod.newValue
    if mod.newRouteTo is not None:
        option["routeTo"] = mod.newRouteTo
    if mod.newRequired is not None:
        option["required"] = mod.newRequired
    if mod.newType is not None:
        option["type"] = mod.newType


def _apply_page_modification(page: Dict[str, Any], mod: PageModification) -> None:
    if mod.newTitle:
        page["title"] = mod.newTitle
    if mod.newInputType:
        page["inputType"] = mod.newInputType

    options = page.get("options") if isinstance(page.get("options"), list) else []
    by_id = {o.get("id"): o for o in options if isinstance(o, dict)}
    for opt_mod in mod.optionModifications:
        target = by_id.get(opt_mod.optionId)
        if target is None:
            log.warning("edit: option %s not found on page %s", opt_mod.optionId, page.get("id"))
            continue
        _apply_option_modification(target, opt_mod)
    if mod.removeOptionIds:
        drop = set(mod.removeOptionIds)
        options = [o for o in options if not (isinstance(o, dict) and o.get("id") in drop)]
    options.extend(copy.deepcopy(mod.addOptions))
    if options or "options" in page:
        page["options"] = options

    if mod.removeRouteButton:
        page.pop("routeButton", None)
    elif mod.newRouteButton is not None:
        page["routeButton"] = mod.newRouteButton.model_dump(exclude_none=True)
    if mod.newDisplayContent is not None:
        page["displayContent"] = [item.model_dump() for item in mod.newDisplayContent]


def _unique_page_id(taken: set, start: int) -> str:
    n = start
    while f"page-{n}" in taken:
        n += 1
    return f"page-{n}"


def _insert_page(pages: List[Dict[str, Any]], add: AddPageRequest) -> None:
    ids = [p.get("id") for p in pages]
    new_id = _unique_page_id(set(ids), len(pages) + 1)
    input_type = add.suggestedInputType or "mixed"
    new_page: Dict[str, Any] = {
        "id": new_id,
        "title": add.suggestedTitle or "New Page",
        "inputType": input_type,
    }
    if input_type != "display-only" and add.suggestedOptions:
        new_page["options"] = [
            {"id": f"{new_id}-opt-{i + 1}", "label": label, "value": label.strip().lower().replace(" ", "-")}
            for i, label in enumerate(add.suggestedOptions)
        ]

    if add.afterPageId and add.afterPageId in ids:
        at = ids.index(add.afterPageId) + 1
        prev = pages[at - 1]
        button = prev.get("routeButton")
        # Splice into a page-level route so the new page is reachable.
        if isinstance(button, dict) and button.get("routeTo"):
            new_page["routeButton"] = {"label": button.get("label") or "Continue", "routeTo": button["routeTo"]}
            button["routeTo"] = new_id
    elif add.beforePageId and add.beforePageId in ids:
        at = ids.index(add.beforePageId)
        if input_type != "display-only":
            new_page["routeButton"] = {"label": "Continue", "routeTo": add.beforePageId}
    else:
        at = len(pages)
    pages.insert(at, new_page)


def apply_explicit_edits(graph: Dict[str, Any], edit: EditRequest) -> Dict[str, Any]:
    """Apply removals, per-page modifications and page insertions to a copy of `graph`.

    Nothing here enforces the graph invariants; run the result through
    `validate_and_normalize` (or a generator pass) afterwards. Unknown page or
    option ids are skipped with a warning.
    """
    out = copy.deepcopy(graph)
    pages = [p for p in out.get("pages") or [] if isinstance(p, dict)]

    if edit.removePageIds:
        drop = set(edit.removePageIds)
        pages = [p for p in pages if p.get("id") not in drop]

    by_id = {p.get("id"): p for p in pages}
    for mod in edit.pageModifications:
        page = by_id.get(mod.pageId)
        if page is None:
            log.warning("edit: page %s not found", mod.pageId)
            continue
        _apply_page_modification(page, mod)

    for add in edit.addPages:
        _insert_page(pages, add)

    out["pages"] = pages
    return out


def feedback_to_edit_request(feedback: FeedbackEditRequest) -> EditRequest:
    """Turn reviewer comments into modification hints for a generator pass."""
    hints: List[str] = []
    for item in feedback.pageSpecificFeedback or []:
        label = f'page {item.pageId}' + (f' ("{item.pageTitle}")' if item.pageTitle else "")
        for note in item.feedbacks:
            if note and note.strip():
                hints.append(f"On {label}: {note.strip()}")
    if feedback.generalFeedback and feedback.generalFeedback.strip():
        hints.append(f"Overall: {feedback.generalFeedback.strip()}")
    return EditRequest(modificationHints=hints, preserveStructure=not feedback.generalFeedback)
