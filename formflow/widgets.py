from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from formflow import llm_prompts
from formflow.errors import FormflowError
from formflow.llm_client import GeneratorClient, get_generator
from formflow.llm_parsing import parse_json_object

log = logging.getLogger(__name__)

WIDGET_MAX_TOKENS = 8000
WIDGET_TEMPERATURE = 0.1

# Insertion order is the order pages appear in a keyword-matched flow.
WIDGET_CATALOG: Dict[str, Dict[str, Any]] = {
    "AuthenticationWidget": {
        "title": "Sign In",
        "description": "Email or phone challenge-link sign-in. Sends a secure link to verify identity.",
        "useCases": ["login", "sign-in", "authentication", "verify identity", "email verification", "phone verification"],
    },
    "ManagedProfileWidget": {
        "title": "Personal Information",
        "description": "Employer selection plus personal (first/middle/last, DOB, SSN) and contact info (email, phone) with a Save action.",
        "useCases": [
            "personal information",
            "profile",
            "employee details",
            "contact info",
            "employer selection",
            "personal details",
            "name and contact",
        ],
    },
    "AddressWidget": {
        "title": "Address Information",
        "description": "Address Line 1/2, City, State dropdown, ZIP with basic validation. Previous/Continue actions.",
        "useCases": [
            "address",
            "location",
            "shipping address",
            "billing address",
            "home address",
            "mailing address",
            "where do you live",
        ],
    },
    "PlanSelectionWidget": {
        "title": "Plan Selection",
        "description": "Available plans with checkboxes and a dynamic total monthly premium. Previous/Next actions.",
        "useCases": [
            "plan selection",
            "choose plan",
            "insurance plans",
            "coverage options",
            "subscription plans",
            "pricing plans",
            "select coverage",
        ],
    },
    "ManagedDependentsWidget": {
        "title": "Dependents & Coverage",
        "description": "Coverage tier radios (Employee Only, +Spouse, +Family), spouse details, add/remove dependents list.",
        "useCases": [
            "dependents",
            "family members",
            "spouse information",
            "coverage tier",
            "family coverage",
            "add dependents",
            "beneficiaries",
        ],
    },
}

AUTH_KEYWORDS = ("account", "profile", "personal", "secure", "login", "enrollment", "application", "claim")


def find_direct_matches(intent: str, context: Optional[str] = None) -> List[str]:
    """Catalogued widgets whose use-case phrases occur in the intent or context."""
    text = f"{intent} {context or ''}".lower()
    return [name for name, info in WIDGET_CATALOG.items() if any(uc in text for uc in info["useCases"])]


def requires_auth(intent: str) -> bool:
    lowered = (intent or "").lower()
    return any(k in lowered for k in AUTH_KEYWORDS)


def _page(order: int, title: str, widget_type: str, manifest: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    page = {"pageId": f"page-{order}", "pageTitle": title, "widgetType": widget_type, "widgetConfig": {}, "order": order}
    if manifest is not None:
        page["manifest"] = manifest
    return page


def build_matched_flow(widget_names: List[str], intent: str) -> Dict[str, Any]:
    pages: List[Dict[str, Any]] = []
    if "AuthenticationWidget" not in widget_names and requires_auth(intent):
        pages.append(_page(1, "Authentication", "AuthenticationWidget"))
    for name in WIDGET_CATALOG:
        if name in widget_names:
            pages.append(_page(len(pages) + 1, WIDGET_CATALOG[name]["title"], name))
    return {
        "success": True,
        "message": "Widget recommendations based on direct matching",
        "pages": pages,
        "totalPages": len(pages),
        "flowDescription": f"Recommended flow for: {intent}",
    }


def fallback_manifest(intent: str, page_id: str, secondary: bool = False) -> Dict[str, Any]:
    if secondary:
        title = "Additional Information"
        description = f"Additional information needed for: {intent}"
        extra = {
            "id": "contactPreference",
            "type": "checkbox",
            "label": "Contact Preferences",
            "helperText": "How would you like us to follow up?",
            "required": False,
            "options": [
                {"label": "Email updates", "value": "email"},
                {"label": "Phone call", "value": "phone"},
                {"label": "Text message", "value": "sms"},
            ],
        }
    else:
        title = "Details"
        description = f"Please provide details for: {intent}"
        extra = {
            "id": "category",
            "type": "dropdown",
            "label": "Category",
            "placeholder": "Select a category...",
            "helperText": "Choose the most relevant category",
            "required": True,
            "searchable": True,
            "options": [
                {"label": "General Inquiry", "value": "general"},
                {"label": "Technical Support", "value": "technical"},
                {"label": "Account Issue", "value": "account"},
                {"label": "Billing Question", "value": "billing"},
                {"label": "Feature Request", "value": "feature"},
                {"label": "Other", "value": "other"},
            ],
        }
    fields = [
        {
            "id": "description",
            "type": "textarea",
            "label": "Description",
            "placeholder": "Please describe your request in detail...",
            "helperText": "Provide as much detail as possible",
            "required": True,
            "validation": {"minLength": 10, "maxLength": 1000},
            "rows": 4,
            "counter": True,
        },
        {
            "id": "priority",
            "type": "radio",
            "label": "Priority Level",
            "helperText": "How urgent is this request?",
            "required": True,
            "options": [
                {"label": "Low - Can wait", "value": "low"},
                {"label": "Medium - Within a week", "value": "medium"},
                {"label": "High - Within 24 hours", "value": "high"},
                {"label": "Urgent - Immediate attention", "value": "urgent"},
            ],
        },
        extra,
    ]
    return {
        "id": page_id,
        "title": title,
        "description": description,
        "fields": fields,
        "layout": {
            "type": "form",
            "sections": [
                {
                    "id": "main-section",
                    "title": "Request Information",
                    "rows": [{"fields": ["description"]}, {"fields": ["priority"]}, {"fields": [extra["id"]]}],
                }
            ],
        },
        "actions": {
            "submit": {
                "label": "Continue",
                "successMessage": "Information saved successfully!",
                "errorMessage": "Please check your inputs and try again.",
            },
            "cancel": {"label": "Back", "action": "back"},
        },
    }


def fallback_flow(intent: str) -> Dict[str, Any]:
    pages = [
        _page(1, "Authentication", "AuthenticationWidget"),
        _page(2, "Personal Information", "ManagedProfileWidget"),
        _page(3, "Details", "custom", fallback_manifest(intent, "page-3")),
        _page(4, "Additional Information", "custom", fallback_manifest(intent, "page-4", secondary=True)),
    ]
    return {
        "success": True,
        "message": "Fallback widget recommendations with manifests",
        "pages": pages,
        "totalPages": len(pages),
        "flowDescription": f"Comprehensive fallback flow for: {intent}",
    }


def _clean_pages(raw_pages: Any) -> List[Dict[str, Any]]:
    allowed = set(WIDGET_CATALOG) | {"custom"}
    pages: List[Dict[str, Any]] = []
    for page in raw_pages if isinstance(raw_pages, list) else []:
        if not isinstance(page, dict):
            continue
        widget = page.get("widgetType")
        if widget not in allowed:
            log.warning("widgets: dropping unknown widget type %r", widget)
            continue
        order = len(pages) + 1
        cleaned = dict(page)
        cleaned.setdefault("pageId", f"page-{order}")
        cleaned.setdefault("pageTitle", WIDGET_CATALOG.get(widget, {}).get("title", "Custom Page"))
        cleaned.setdefault("widgetConfig", {})
        cleaned["order"] = order
        pages.append(cleaned)
    return pages


def recommend_widgets(
    intent: str,
    context: Optional[str] = None,
    *,
    client: Optional[GeneratorClient] = None,
) -> Dict[str, Any]:
    """Keyword matches first; otherwise ask the generator, falling back to a canned flow."""
    matches = find_direct_matches(intent, context)
    if matches:
        log.info("widgets: %d direct matches for %r", len(matches), intent)
        return build_matched_flow(matches, intent)

    gen = client if client is not None else get_generator()
    if gen is None:
        log.info("widgets: no generator configured; using fallback flow")
        return fallback_flow(intent)
    try:
        raw = gen.generate(
            llm_prompts.build_widget_system_prompt(WIDGET_CATALOG),
            llm_prompts.build_widget_analysis_prompt(intent, context),
            max_tokens=WIDGET_MAX_TOKENS,
            temperature=WIDGET_TEMPERATURE,
        )
        doc = parse_json_object(raw)
    except FormflowError as e:
        log.warning("widgets: generator recommendation failed: %s", e)
        return fallback_flow(intent)

    pages = _clean_pages(doc.get("pages"))
    if not pages:
        return fallback_flow(intent)
    return {
        "success": True,
        "message": "Widget recommendations generated successfully",
        "pages": pages,
        "totalPages": len(pages),
        "flowDescription": doc.get("flowDescription") or "AI-generated widget flow",
    }
