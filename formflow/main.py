import logging
import os
import time
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from formflow.edits import EditRequest, FeedbackEditRequest, feedback_to_edit_request, needs_generation
from formflow.errors import AnalysisFailed, GenerationFailed, NoPagesFound, NotFound
from formflow.generation import (
    analyze_submission,
    apply_feedback,
    edit_stored_graph,
    generate_graph,
    make_claim_number,
    utc_now_iso,
)
from formflow.input_validation import validate_batch, validate_input
from formflow.llm_client import get_generator, probe as llm_probe, status as llm_status
from formflow.store import get_store
from formflow.validators import collect_errors, validate_and_normalize
from formflow.widgets import recommend_widgets

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

forms = get_store("forms", kind="Form")
submissions = get_store("submissions", kind="Submission")

app = FastAPI(title="formflow")

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


class GenerateFormRequest(BaseModel):
    userIntent: str = Field("", description="What the form should help the user do")
    context: Optional[str] = Field(default=None, description="Optional extra context for the generator")


class SubmitRequest(BaseModel):
    responses: Optional[Dict[str, Any]] = None


class DeleteBatchRequest(BaseModel):
    formIds: List[str] = Field(default_factory=list)


class InputValidationRequest(BaseModel):
    value: Any = None
    inputType: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    fieldName: Optional[str] = None


class BatchValidationRequest(BaseModel):
    validations: Optional[List[Dict[str, Any]]] = None


def _error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": error}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def _missing_generator() -> JSONResponse:
    return _error(503, "Missing LLM credentials")


def _drop_submissions_for(form_id: str) -> int:
    n = 0
    for sub in submissions.list():
        if sub.get("formId") == form_id and submissions.delete(sub["id"]):
            n += 1
    return n


@app.get("/health")
def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": utc_now_iso(),
        "formsGenerated": len(forms),
        "totalSubmissions": len(submissions),
        "generator": llm_status().get("using"),
    }


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return llm_status()


@app.get("/llm/probe")
def llm_probe_endpoint() -> Dict[str, Any]:
    return llm_probe()


@app.post("/api/forms/generate")
def generate_form(req: GenerateFormRequest):
    intent = (req.userIntent or "").strip()
    if not intent:
        return _error(400, "userIntent is required and must be a non-empty string")
    gen = get_generator()
    if gen is None:
        return _missing_generator()
    log.info("generating form for intent=%r", intent)
    try:
        graph = generate_graph(intent, req.context, client=gen)
    except GenerationFailed as e:
        log.error("form generation failed: %s", e)
        return _error(500, "Failed to generate form", str(e))
    forms.put(graph["id"], graph)
    return JSONResponse(graph)


def _edit(form_id: str, req: EditRequest, clone: bool):
    gen = get_generator()
    if gen is None and needs_generation(req):
        return _missing_generator()
    try:
        graph = edit_stored_graph(forms, form_id, req, clone, client=gen)
    except NotFound:
        return _error(404, "Form not found")
    except GenerationFailed as e:
        return _error(500, "Failed to clone and edit form" if clone else "Failed to edit form", str(e))
    return JSONResponse(graph)


@app.put("/api/forms/{form_id}/edit")
def edit_form(form_id: str, req: EditRequest):
    return _edit(form_id, req, clone=False)


@app.put("/api/forms/{form_id}/clone-edit")
def clone_edit_form(form_id: str, req: EditRequest):
    return _edit(form_id, req, clone=True)


@app.put("/api/forms/{form_id}/feedback-edit")
def feedback_edit_form(form_id: str, req: FeedbackEditRequest):
    if not req.pageSpecificFeedback and not req.generalFeedback:
        return _error(400, "Either pageSpecificFeedback or generalFeedback is required")
    gen = get_generator()
    if gen is None and needs_generation(feedback_to_edit_request(req)):
        return _missing_generator()
    try:
        result = apply_feedback(forms, form_id, req, client=gen)
    except NotFound:
        return _error(404, "Form not found")
    except GenerationFailed as e:
        return _error(500, "Failed to process feedback edit", str(e))
    mods = result["modifications"]
    log.info(
        "feedback edit %s modified=%d added=%d removed=%d",
        form_id,
        len(mods["pagesModified"]),
        len(mods["pagesAdded"]),
        len(mods["pagesRemoved"]),
    )
    return JSONResponse(result)


@app.put("/api/forms/{form_id}/save")
def save_form(form_id: str, body: Dict[str, Any]):
    existing = forms.get(form_id)
    if existing is None:
        return _error(404, "Form not found")
    if not body.get("name") or not isinstance(body.get("pages"), list):
        return _error(400, "Invalid form data", "Form must have name and pages array")
    try:
        normalized = validate_and_normalize(body)
    except NoPagesFound as e:
        return _error(400, "Invalid form data", str(e))
    saved = {
        **normalized,
        "id": form_id,
        "createdAt": existing.get("createdAt"),
        "generatedFrom": existing.get("generatedFrom"),
        "lastEditedAt": utc_now_iso(),
    }
    forms.put(form_id, saved)
    log.info("saved manual edit of %s pages=%d", form_id, len(saved["pages"]))
    return {"success": True, "message": "Form saved successfully", "form": saved}


@app.get("/api/forms")
def list_forms() -> Dict[str, Any]:
    with_subs = {s.get("formId") for s in submissions.list()}
    items = [
        {
            "id": f.get("id"),
            "name": f.get("name"),
            "description": f.get("description"),
            "createdAt": f.get("createdAt"),
            "generatedFrom": f.get("generatedFrom"),
            "pageCount": len(f.get("pages") or []),
            "lastEditedAt": f.get("lastEditedAt"),
            "hasSubmissions": f.get("id") in with_subs,
        }
        for f in forms.list()
    ]
    items.sort(key=lambda f: f.get("createdAt") or "", reverse=True)
    return {"forms": items, "total": len(items)}


@app.get("/api/forms/{form_id}")
def get_form(form_id: str):
    form = forms.get(form_id)
    if form is None:
        return _error(404, "Form not found")
    return JSONResponse(form)


@app.delete("/api/forms/{form_id}")
def delete_form(form_id: str):
    form = forms.get(form_id)
    if form is None:
        return _error(404, "Form not found")
    dropped = _drop_submissions_for(form_id)
    forms.delete(form_id)
    log.info("deleted form %s and %d submissions", form_id, dropped)
    return {
        "success": True,
        "message": "Form deleted successfully",
        "deletedForm": {"id": form.get("id"), "name": form.get("name")},
        "deletedSubmissions": dropped,
    }


@app.delete("/api/forms")
def delete_all_forms(confirm: str = ""):
    if confirm != "true":
        return _error(400, "Confirmation required", "Add ?confirm=true to the URL to delete all forms")
    total_forms = forms.clear()
    total_subs = submissions.clear()
    log.warning("deleted all forms (%d) and submissions (%d)", total_forms, total_subs)
    return {
        "success": True,
        "message": "All forms deleted successfully",
        "deletedForms": total_forms,
        "deletedSubmissions": total_subs,
    }


@app.post("/api/forms/delete-batch")
def delete_forms_batch(req: DeleteBatchRequest):
    if not req.formIds:
        return _error(400, "Invalid request", "formIds must be a non-empty array")
    results: Dict[str, Any] = {"deleted": [], "notFound": [], "totalSubmissionsDeleted": 0}
    for form_id in req.formIds:
        if forms.get(form_id) is None:
            results["notFound"].append(form_id)
            continue
        results["totalSubmissionsDeleted"] += _drop_submissions_for(form_id)
        forms.delete(form_id)
        results["deleted"].append(form_id)
    return {"success": True, "message": f"Deleted {len(results['deleted'])} forms", "results": results}


@app.post("/api/forms/{form_id}/submit")
def submit_form(form_id: str, req: SubmitRequest):
    form = forms.get(form_id)
    if form is None:
        return _error(404, "Form not found")
    if req.responses is None:
        return _error(400, "Responses object is required")

    claim = make_claim_number()
    record = {
        "id": str(uuid.uuid4()),
        "formId": form_id,
        "responses": req.responses,
        "submittedAt": utc_now_iso(),
        "claimNumber": claim,
    }
    submissions.put(record["id"], record)

    analysis = None
    gen = get_generator()
    if gen is not None:
        try:
            analysis = analyze_submission(form, req.responses, client=gen)
        except AnalysisFailed as e:
            return _error(500, "Failed to process form submission", str(e))
        record["aiAnalysis"] = analysis
        submissions.put(record["id"], record)
    log.info("submission %s for %s claim=%s", record["id"], form_id, claim)
    return {
        "success": True,
        "message": "Form submitted successfully",
        "formData": req.responses,
        "aiAnalysis": analysis,
        "claimNumber": claim,
    }


@app.get("/api/forms/{form_id}/submissions")
def list_form_submissions(form_id: str):
    form = forms.get(form_id)
    if form is None:
        return _error(404, "Form not found")
    subs = [s for s in submissions.list() if s.get("formId") == form_id]
    return {"formId": form_id, "formName": form.get("name"), "submissions": subs, "total": len(subs)}


@app.get("/api/submissions/{submission_id}")
def get_submission(submission_id: str):
    sub = submissions.get(submission_id)
    if sub is None:
        return _error(404, "Submission not found")
    return JSONResponse(sub)


@app.post("/api/forms/normalize")
def normalize_form(body: Dict[str, Any]):
    try:
        return JSONResponse(validate_and_normalize(body))
    except NoPagesFound as e:
        return _error(422, "No pages found", str(e))


@app.post("/validate")
def validate_endpoint(graph: Dict[str, Any]):
    """
    Check a page graph against every structural and routing invariant.
    Returns 200 and {"detail":{"valid":true}} on success,
            422 and {"detail":{"valid":false,"errors":[...]}} on failure.
    """
    errors = collect_errors(graph)
    detail: Dict[str, Any] = {"valid": not errors}
    if errors:
        detail["errors"] = errors
        return JSONResponse(status_code=422, content={"detail": detail})
    return {"detail": detail}


@app.post("/api/forms/validate")
def validate_field(req: InputValidationRequest):
    if not req.inputType or "value" not in req.model_fields_set:
        return _error(400, "Invalid validation request", "inputType and value are required")
    result = validate_input(req.value, req.inputType, req.config or {}, req.fieldName)
    if not result["isValid"]:
        log.info("validation failed field=%s errors=%s", req.fieldName or "unknown", result["errors"])
    return result


@app.post("/api/forms/validate/batch")
def validate_fields_batch(req: BatchValidationRequest):
    if req.validations is None:
        return _error(400, "Invalid batch validation request", "validations must be an array of ValidationRequest objects")
    return validate_batch(req.validations)


@app.post("/api/widgets/recommend")
def recommend_widgets_endpoint(req: GenerateFormRequest):
    intent = (req.userIntent or "").strip()
    if not intent:
        return _error(400, "userIntent is required and must be a non-empty string")
    context = req.context.strip() if req.context else None
    result = recommend_widgets(intent, context, client=get_generator())
    log.info("widget recommendation pages=%d", result["totalPages"])
    return result
