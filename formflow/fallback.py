from __future__ import annotations

from typing import Any, Dict

TERMINAL_PAGE_ID = "page-end"


def _intent_wording(intent: str) -> Dict[str, str]:
    """Pick name/description/first-question copy from simple intent keywords."""
    text = (intent or "").strip()
    lowered = text.lower()
    if "learn" in lowered:
        return {
            "name": "Learning Path Assistant",
            "description": "Help us create a personalized learning plan for you",
            "title": "What would you like to learn about?",
            "detailed": "I want a structured learning plan",
            "quick": "I need learning resources",
        }
    if "plan" in lowered or "schedule" in lowered:
        return {
            "name": "Planning Assistant",
            "description": "Help us create a plan that works for you",
            "title": "What type of planning do you need?",
            "detailed": "I need detailed guidance",
            "quick": "I want step-by-step instructions",
        }
    return {
        "name": "Information Gathering",
        "description": "A short form to help with your request",
        "title": f"Let's help you with: {text}" if text else "How can we help you today?",
        "detailed": "I need detailed guidance",
        "quick": "I want step-by-step instructions",
    }


def build_fallback_graph(intent: str = "") -> Dict[str, Any]:
    """Return a hand-authored three page graph that already satisfies every invariant.

    Used when the generator output is too damaged to trust and by the offline
    generator. Callers get a fresh dict each time and may mutate it.
    """
    words = _intent_wording(intent)
    return {
        "name": words["name"],
        "description": words["description"],
        "pages": [
            {
                "id": "page-1",
                "title": words["title"],
                "inputType": "single-choice",
                "options": [
                    {"id": "opt-1", "label": words["detailed"], "value": "detailed", "routeTo": "page-2"},
                    {"id": "opt-2", "label": words["quick"], "value": "steps", "routeTo": "page-2"},
                ],
            },
            {
                "id": "page-2",
                "title": "Tell us about your specific goals",
                "inputType": "mixed",
                "options": [
                    {
                        "id": "goal-details",
                        "type": "text",
                        "label": "Describe your main objective",
                        "value": "",
                        "required": True,
                    },
                ],
                "routeButton": {"label": "Continue", "routeTo": "page-3"},
            },
            {
                "id": "page-3",
                "title": "Thank you for providing detailed information. Your recommendations are being prepared.",
                "inputType": "display-only",
            },
        ],
    }
