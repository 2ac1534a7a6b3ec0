from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from formflow import llm_prompts
from formflow.errors import GeneratorError
from formflow.fallback import build_fallback_graph

log = logging.getLogger(__name__)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o").strip()
OPENAI_ENDPOINT = os.getenv("OPENAI_ENDPOINT", "https://api.openai.com/v1/chat/completions").strip()
_ENV_OPENAI_API_KEY = OPENAI_API_KEY

OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "").strip()
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "openai/gpt-4o").strip()
OPENROUTER_FALLBACK_MODEL = os.getenv("OPENROUTER_FALLBACK_MODEL", "").strip()
OPENROUTER_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"
_ENV_OPENROUTER_API_KEY = OPENROUTER_API_KEY

# Groq (OpenAI-compatible)
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "").strip()
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile").strip()
GROQ_FALLBACK_MODEL = os.getenv("GROQ_FALLBACK_MODEL", "llama-3.1-8b-instant").strip()
GROQ_ENDPOINT = "https://api.groq.com/openai/v1/chat/completions"
_ENV_GROQ_API_KEY = GROQ_API_KEY

LLM_PROVIDER = os.getenv("LLM_PROVIDER", "").strip().lower()
ALLOW_OFFLINE_GENERATION = os.getenv("ALLOW_OFFLINE_GENERATION", "0").lower() in {"1", "true", "yes", "on"}

try:
    LLM_TIMEOUT_SECS = int(os.getenv("LLM_TIMEOUT_SECS", "75"))
except Exception:
    LLM_TIMEOUT_SECS = 75

PROVIDERS = ("openai", "openrouter", "groq")


def _testing_stub_enabled() -> bool:
    """Return True when pytest is running and keys match the original environment values."""
    if not os.getenv("PYTEST_CURRENT_TEST"):
        return False
    if os.getenv("RUN_LIVE_LLM_TESTS", "0").lower() in {"1", "true", "yes", "on"}:
        return False
    if OPENAI_API_KEY != _ENV_OPENAI_API_KEY:
        return False
    if OPENROUTER_API_KEY != _ENV_OPENROUTER_API_KEY:
        return False
    if GROQ_API_KEY != _ENV_GROQ_API_KEY:
        return False
    return True


class GeneratorClient(Protocol):
    """Anything that turns a (system, user) prompt pair into raw model text."""

    def generate(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> str:
        ...


class ChatCompletionsClient:
    """OpenAI-compatible chat-completions endpoint over `requests`.

    JSON mode is requested first; a 400 retries once without it. Non-200
    responses on a rate limit or a rejected model retry once per fallback
    model. Every failure surfaces as GeneratorError.
    """

    def __init__(
        self,
        provider: str,
        endpoint: str,
        api_key: str,
        model: str,
        *,
        fallback_models: Sequence[str] = (),
        timeout: int = LLM_TIMEOUT_SECS,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.provider = provider
        self.endpoint = endpoint
        self.api_key = api_key
        self.model = model
        self.fallback_models = [m for m in fallback_models if m and m != model]
        self.timeout = timeout
        self.extra_headers = dict(extra_headers or {})

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(self.extra_headers)
        return headers

    def _post(self, body: Dict[str, Any]):
        try:
            return requests.post(self.endpoint, headers=self._headers(), json=body, timeout=self.timeout)
        except requests.RequestException as e:
            log.warning("%s request error: %r", self.provider, e)
            raise GeneratorError(f"{self.provider} request failed: {e}") from e

    @staticmethod
    def _body_text(resp) -> str:
        try:
            return (resp.text or "")[:400]
        except Exception:
            return str(resp.status_code)

    def generate(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> str:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": float(temperature),
            "max_tokens": int(max_tokens),
        }
        body_with_json = dict(body)
        body_with_json["response_format"] = {"type": "json_object"}

        resp = self._post(body_with_json)
        if resp.status_code == 400:
            # Retry without json mode
            resp = self._post(body)

        if resp.status_code != 200:
            lower = self._body_text(resp).lower()
            model_rejected = "model" in lower and ("not found" in lower or "invalid" in lower)
            if resp.status_code == 429 or model_rejected:
                for fallback_model in self.fallback_models:
                    log.warning("%s model '%s' failed (HTTP %s); retrying with '%s'",
                                self.provider, self.model, resp.status_code, fallback_model)
                    resp = self._post(dict(body, model=fallback_model))
                    if resp.status_code == 200:
                        break
        if resp.status_code != 200:
            msg = self._body_text(resp)
            log.warning("%s HTTP %s: %s", self.provider, resp.status_code, msg)
            raise GeneratorError(f"{self.provider} HTTP {resp.status_code}: {msg}")

        try:
            data = resp.json()
        except ValueError as e:
            log.warning("%s: non-JSON HTTP body", self.provider)
            raise GeneratorError(f"{self.provider} returned a non-JSON body") from e

        text: Optional[str]
        try:
            text = data.get("choices", [{}])[0].get("message", {}).get("content")
        except (AttributeError, IndexError, TypeError):
            text = None
        if not text or not isinstance(text, str) or not text.strip():
            log.warning("%s: empty response text", self.provider)
            raise GeneratorError("No content received from AI service")
        return text


_INTENT_RE = re.compile(r'Create a decision tree form for: "(.*)"')
_USER_INTENT_RE = re.compile(r'USER INTENT: "(.*)"')
_CURRENT_FORM_RE = re.compile(r"CURRENT FORM:\n(.*?)\n\nREQUESTED CHANGES:", re.DOTALL)


class StubGenerator:
    """Offline generator with canned answers keyed off the system prompt.

    Form prompts get the fallback graph for the quoted intent, edit prompts
    echo the embedded form back, analysis and widget prompts get fixed JSON.
    Calls are recorded on `self.calls`.
    """

    provider = "stub"
    model = None

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    def generate(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> str:
        self.calls.append({"system": system_prompt, "user": user_prompt, "max_tokens": max_tokens, "temperature": temperature})
        if system_prompt == llm_prompts.ANALYSIS_SYSTEM_PROMPT:
            return json.dumps(
                {
                    "summary": "Submission received and recorded.",
                    "nextSteps": "Review the submitted answers and follow up with the user.",
                    "dataQuality": "Answers were provided for the submitted pages.",
                    "insights": ["Generated offline without a language model"],
                    "priority": "medium",
                }
            )
        m = _USER_INTENT_RE.search(user_prompt)
        if m and "widgets" in system_prompt:
            return json.dumps(
                {
                    "pages": [
                        {"pageId": "page-1", "pageTitle": "Sign In", "widgetType": "AuthenticationWidget", "widgetConfig": {}, "order": 1},
                        {"pageId": "page-2", "pageTitle": "Personal Information", "widgetType": "ManagedProfileWidget", "widgetConfig": {}, "order": 2},
                    ],
                    "flowDescription": f"Offline flow for: {m.group(1)}",
                }
            )
        current = _CURRENT_FORM_RE.search(user_prompt)
        if current:
            return current.group(1)
        m = _INTENT_RE.search(user_prompt)
        return json.dumps(build_fallback_graph(m.group(1) if m else ""))


def _configured_provider() -> Optional[str]:
    keys = {"openai": OPENAI_API_KEY, "openrouter": OPENROUTER_API_KEY, "groq": GROQ_API_KEY}
    if LLM_PROVIDER in keys:
        return LLM_PROVIDER if keys[LLM_PROVIDER] else None
    for name in PROVIDERS:
        if keys[name]:
            return name
    return None


def build_client(provider: str) -> ChatCompletionsClient:
    if provider == "openai":
        return ChatCompletionsClient("openai", OPENAI_ENDPOINT, OPENAI_API_KEY, OPENAI_MODEL)
    if provider == "openrouter":
        return ChatCompletionsClient(
            "openrouter",
            OPENROUTER_ENDPOINT,
            OPENROUTER_API_KEY,
            OPENROUTER_MODEL,
            fallback_models=[OPENROUTER_FALLBACK_MODEL],
            extra_headers={"X-Title": "formflow"},
        )
    if provider == "groq":
        return ChatCompletionsClient("groq", GROQ_ENDPOINT, GROQ_API_KEY, GROQ_MODEL, fallback_models=[GROQ_FALLBACK_MODEL])
    raise ValueError(f"unknown LLM provider: {provider}")


def get_generator() -> Optional[GeneratorClient]:
    """The generator to use right now, or None when nothing is configured."""
    if _testing_stub_enabled():
        return StubGenerator()
    provider = _configured_provider()
    if provider:
        return build_client(provider)
    if ALLOW_OFFLINE_GENERATION:
        return StubGenerator()
    return None


def status() -> Dict[str, Any]:
    if _testing_stub_enabled():
        return {"provider": None, "model": None, "has_token": False, "using": "stub", "testing": True}
    provider = _configured_provider()
    if provider:
        client = build_client(provider)
        return {"provider": provider, "model": client.model, "has_token": True, "using": provider}
    return {
        "provider": None,
        "model": None,
        "has_token": False,
        "using": "stub" if ALLOW_OFFLINE_GENERATION else None,
    }


def probe() -> Dict[str, Any]:
    if _testing_stub_enabled():
        return {"ok": False, "using": "stub", "testing": True}
    provider = _configured_provider()
    if provider:
        return {"ok": True, "using": provider}
    return {"ok": ALLOW_OFFLINE_GENERATION, "using": "stub" if ALLOW_OFFLINE_GENERATION else None}
