"""
AI / vision capability backends.

A capability turns text or document bytes into a best-effort guess:

    analyze(payload, hint, timeout) -> {"fields": {...}, "confidence": float, "raw_text": str | None}

It may raise or time out; the AI strategy contains that. One call per
``analyze``; nothing here retries.
"""
import base64
import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import requests
from openai import OpenAI

from .. import config
from ..errors import ExtractionStrategyError

logger = logging.getLogger(__name__)

PROMPT_FILE = Path(__file__).resolve().parent.parent / "utils" / "extraction_prompt.txt"

Payload = Union[bytes, str]


def _read_prompt_file() -> tuple[str, dict]:
    diag = {"checked_paths": [str(PROMPT_FILE)]}
    if PROMPT_FILE.exists():
        text = PROMPT_FILE.read_text(encoding="utf-8")
        diag.update({"prompt_path": str(PROMPT_FILE), "prompt_exists": True, "prompt_len": len(text)})
        return text, diag
    diag["prompt_exists"] = False
    return "", diag


def _robust_json_parse(output: str) -> dict:
    # direct
    try:
        return json.loads(output)
    except ValueError:
        pass
    # fenced code block ```json ... ```
    if "```" in output:
        m = re.search(r"```json\s*(\{[\s\S]*?\})\s*```", output, re.IGNORECASE)
        if m:
            return json.loads(m.group(1))
    # outermost braces
    start = output.find("{")
    end = output.rfind("}")
    if start != -1 and end != -1 and end > start:
        return json.loads(output[start:end + 1])
    raise json.JSONDecodeError("No JSON object could be decoded", output, 0)


def _hint_block(hint: Mapping[str, Any]) -> str:
    return "HINT: " + json.dumps(dict(hint), ensure_ascii=False, default=str) if hint else ""


def _prompt() -> str:
    prompt, diag = _read_prompt_file()
    if not prompt:
        raise ExtractionStrategyError("ai", f"prompt file missing (checked {diag['checked_paths']})")
    return prompt


class OpenAIVisionCapability:
    """OpenAI chat completions with JSON output; images as data URIs, PDFs as file parts."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        self.model = model or config.OPENAI_MODEL
        if client is None:
            key = api_key or config.OPENAI_API_KEY
            if not key:
                raise RuntimeError("OPENAI_API_KEY not set in environment")
            client = OpenAI(api_key=key)
        self.client = client

    def _user_content(self, payload: Payload, hint: Mapping[str, Any], prompt: str) -> list:
        mime = str(hint.get("mime_type") or "text/plain")
        text_part = "\n\n".join(p for p in (prompt, _hint_block(hint)) if p)
        if isinstance(payload, str):
            return [{"type": "text", "text": f"{text_part}\n\nDocument text:\n{payload}"}]
        b64 = base64.b64encode(payload).decode("ascii")
        if mime == "application/pdf":
            return [
                {"type": "text", "text": text_part},
                {"type": "file", "file": {"filename": hint.get("filename") or "document.pdf",
                                          "file_data": f"data:application/pdf;base64,{b64}"}},
            ]
        return [
            {"type": "text", "text": text_part},
            {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{b64}"}},
        ]

    def analyze(self, payload: Payload, hint: Mapping[str, Any], timeout: float) -> Dict[str, Any]:
        prompt = _prompt()
        t0 = time.time()
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": "Extract the freight quote fields from the document as JSON."},
                {"role": "user", "content": self._user_content(payload, hint, prompt)},
            ],
            response_format={"type": "json_object"},
            temperature=0,
            timeout=timeout,
        )
        out = response.choices[0].message.content or ""
        logger.debug("openai %s answered in %.2fs (%d chars)", self.model, time.time() - t0, len(out))
        return _robust_json_parse(out.strip())


class OllamaCapability:
    """Local Ollama /api/generate; images go in the ``images`` list."""

    def __init__(self, api_url: Optional[str] = None, model: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.api_url = api_url or config.OLLAMA_API_URL
        self.model = model or config.OLLAMA_MODEL
        self.session = session or requests.Session()

    def analyze(self, payload: Payload, hint: Mapping[str, Any], timeout: float) -> Dict[str, Any]:
        prompt = "\n\n".join(p for p in (_prompt(), _hint_block(hint)) if p)
        body: Dict[str, Any] = {"model": self.model, "stream": False, "format": "json"}
        if isinstance(payload, str):
            body["prompt"] = f"{prompt}\n\nDocument text:\n{payload}"
        elif hint.get("mime_type") == "application/pdf":
            raise ExtractionStrategyError("ai", "PDF input is not supported by the Ollama backend")
        else:
            body["prompt"] = prompt
            body["images"] = [base64.b64encode(payload).decode("ascii")]

        resp = self.session.post(self.api_url, json=body, headers={"Content-Type": "application/json"},
                                 timeout=timeout)
        if resp.status_code != 200:
            raise ExtractionStrategyError("ai", f"ollama http_status={resp.status_code}: {resp.text[:300]}")
        return _robust_json_parse((resp.json().get("response") or "").strip())


def build_capability(backend: Optional[str] = None):
    """Capability for the configured backend, or None when AI is disabled."""
    backend = (backend or config.AI_BACKEND or "none").lower()
    if backend == "openai":
        if not config.OPENAI_API_KEY:
            logger.warning("AI_BACKEND=openai but OPENAI_API_KEY is empty; AI extraction disabled")
            return None
        return OpenAIVisionCapability()
    if backend == "ollama":
        return OllamaCapability()
    if backend != "none":
        logger.warning("unknown AI_BACKEND %r; AI extraction disabled", backend)
    return None
