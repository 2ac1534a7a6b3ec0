from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

FORM_SYSTEM_PROMPT = (
    "You are an expert at creating comprehensive, detailed forms and decision trees. "
    "You create thorough, professional-grade forms that cover all possible scenarios and gather complete information. "
    "You MUST respond with valid, complete JSON only. Every JSON object must be properly closed. "
    "Every routeButton must have both label and routeTo fields."
)

ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert at analyzing form data and providing actionable insights. "
    "You always respond with valid JSON only, no explanations or markdown."
)

_STRUCTURE_RULES = """STRUCTURE RULES:
1. "single-choice" pages: every option has a routeTo field, the page has NO routeButton
2. "multi-choice" pages: options have NO routeTo, the page has a routeButton {"label","routeTo"}
3. "mixed" pages: text inputs ({"type":"text","required":true}) and toggles, the page has a routeButton
4. "display-only" pages: NO options array, optional routeButton that never points at its own page
5. Every routeTo is an existing page id, or "page-end" to finish the flow"""

_JSON_EXAMPLE = """{
  "name": "[Relevant Form Name]",
  "description": "[Form description matching user intent]",
  "pages": [
    {
      "id": "page-1",
      "title": "[Question relevant to user intent]",
      "inputType": "single-choice",
      "options": [
        {"id": "opt-1", "label": "[Option relevant to intent]", "value": "value1", "routeTo": "page-2"},
        {"id": "opt-2", "label": "[Second relevant option]", "value": "value2", "routeTo": "page-3"}
      ]
    }
  ]
}"""


def build_form_generation_prompt(user_intent: str, context: Optional[str] = None, min_pages: int = 20) -> str:
    context_line = f"Additional context: {context}\n" if context else ""
    return f"""
Create a decision tree form for: "{user_intent}"
{context_line}
Generate a form that helps users with this specific request. The form should be relevant, practical, and directly address their needs.

{_STRUCTURE_RULES}

Create MINIMUM {min_pages} pages that cover the user's intent with detailed branching:
- Start with relevant categorization (3-4 major branches)
- Each major branch has several sub-pages for detailed information gathering
- Add information gathering pages (mixed type) for detailed data collection
- Finish with resolution pages (display-only) describing next steps

JSON Example:
{_JSON_EXAMPLE}

VALIDATION CHECKLIST:
- At least {min_pages} pages total
- No empty options arrays (except display-only pages, which have none)
- All routeTo values reference actual page IDs

RESPOND ONLY WITH VALID JSON."""


def _describe_edit(edit: Dict[str, Any]) -> List[str]:
    lines: List[str] = []
    if edit.get("newIntent"):
        lines.append(f'- The form must now serve this intent: "{edit["newIntent"]}"')
    if edit.get("newContext"):
        lines.append(f"- Additional context: {edit['newContext']}")
    if edit.get("regenerateAll"):
        lines.append("- Regenerate the entire form, using the current form only as a reference")
    regen = edit.get("regeneratePageIds") or []
    if regen:
        lines.append(f"- Regenerate these pages, keeping their ids: {', '.join(regen)}")
    for add in edit.get("addPages") or []:
        if add.get("purpose"):
            lines.append(f"- Flesh out the new page \"{add.get('suggestedTitle') or 'new page'}\": {add['purpose']}")
    for hint in edit.get("modificationHints") or []:
        lines.append(f"- {hint}")
    if edit.get("preserveStructure"):
        lines.append("- Keep the same page flow and routing structure")
    if edit.get("preservePageCount"):
        lines.append("- Keep exactly the same number of pages")
    return lines


def build_form_edit_prompt(current: Dict[str, Any], edit: Dict[str, Any], min_pages: int = 20) -> str:
    """Prompt for an edit pass; `current` already carries any explicit per-page edits."""
    body = {k: v for k, v in current.items() if k in {"name", "description", "pages"}}
    serialized = json.dumps(body, ensure_ascii=False, indent=2)
    requested = "\n".join(_describe_edit(edit)) or "- Improve clarity while keeping the intent"
    floor = "" if edit.get("preservePageCount") else f"\nThe edited form must have at least {edit.get('minPages') or min_pages} pages."
    return f"""
Edit the following decision tree form.

CURRENT FORM:
{serialized}

REQUESTED CHANGES:
{requested}
{floor}
Keep the ids of pages you do not change. Return the COMPLETE edited form, not a diff.

{_STRUCTURE_RULES}

RESPOND ONLY WITH VALID JSON."""


def build_submission_analysis_prompt(form_id: str, responses: Dict[str, Any], form_name: str = "") -> str:
    try:
        serialized = json.dumps(responses, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        serialized = str(responses)
    name_line = f"Form name: {form_name}\n" if form_name else ""
    return f"""
Analyze this form submission and provide insights for next steps:

Form ID: {form_id}
{name_line}User Responses: {serialized}

Provide a JSON response with the following structure:
{{
  "summary": "Brief summary of what the user provided and their situation",
  "nextSteps": "Specific next actions that should be taken based on their responses",
  "dataQuality": "Assessment of completeness and quality of information provided",
  "insights": ["key insights", "important findings", "recommendations"],
  "priority": "low|medium|high|urgent"
}}

Consider:
- What critical information was provided?
- What might be missing that they should gather?
- What immediate actions are needed?
- How urgent is their situation?

RESPOND ONLY WITH VALID JSON. NO EXPLANATIONS OR MARKDOWN."""


def build_widget_system_prompt(catalog: Dict[str, Dict[str, Any]]) -> str:
    widget_lines = "\n".join(f"- {name}: {info['description']}" for name, info in catalog.items())
    return f"""You are an expert at analyzing user intents and recommending appropriate UI widgets for form flows.

AVAILABLE WIDGETS:
{widget_lines}

RULES:
1. Recommend a logical flow of 4-8 pages
2. ONLY use widgets from the available list above
3. If no available widget fits, use "custom" for that page and include a "manifest" with fields, layout and actions
4. Create a logical sequence (e.g., auth first, then profile, then specific functionality)
5. Respond with VALID JSON only

RESPONSE FORMAT:
{{"pages": [{{"pageId": "page-1", "pageTitle": "Authentication", "widgetType": "AuthenticationWidget", "widgetConfig": {{}}, "order": 1}}],
 "flowDescription": "Brief description of the overall flow"}}"""


def build_widget_analysis_prompt(user_intent: str, context: Optional[str] = None) -> str:
    context_line = f'ADDITIONAL CONTEXT: "{context}"\n' if context else ""
    return f"""
TASK: Analyze this user intent and recommend which widgets to use in what order.

USER INTENT: "{user_intent}"
{context_line}
ANALYSIS REQUIREMENTS:
1. Determine what the user is trying to accomplish
2. Create a logical flow of 4-8 pages
3. Start with authentication if it's a secure process
4. Include profile/personal info collection if needed
5. Use "custom" for any page that doesn't fit available widgets, with a complete manifest

AVAILABLE FIELD TYPES FOR CUSTOM MANIFESTS:
text, email, phone, password, number, date, radio, checkbox, dropdown, textarea, slider

Respond with JSON containing pages array and flowDescription."""
