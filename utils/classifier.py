"""Gemini-backed complaint classification with a deterministic keyword fallback."""
import json
import re
from typing import Any, Dict, List

from flask import current_app
from google import genai
from google.genai import types

from models import DEPARTMENTS
from utils.errors import TransportFailure

KEYWORD_RULES = (
    ("Roads & Infrastructure", re.compile(r"pothole|road|footpath|pavement|bridge|traffic")),
    ("Sanitation & Waste", re.compile(r"garbage|waste|trash|dustbin|sanit|sewage")),
    ("Street Lighting", re.compile(r"light|lamp|street.*light|dark|bulb")),
    ("Water Supply", re.compile(r"water|pipe|supply|leakage|flood")),
    ("Parks & Gardens", re.compile(r"park|garden|tree|grass|playground")),
)
EMERGENCY_PATTERN = re.compile(r"emergency|danger|hazard|accident|injur|fire|electric|wire")


class ClassifierError(TransportFailure):
    """Raised when the remote classifier cannot return a usable result."""


def keyword_classification(title: str, description: str) -> Dict[str, Any]:
    text = f"{title or ''} {description or ''}".lower()
    department = next((name for name, pattern in KEYWORD_RULES if pattern.search(text)), "General")
    emergency = bool(EMERGENCY_PATTERN.search(text))
    words = [word for word in re.findall(r"[a-z]{4,}", text)][:3]
    return {
        "department": department,
        "severity": 8 if emergency else 4,
        "emergency": emergency,
        "tags": words,
        "summary": (title or description or "")[:80],
        "suggestedTitle": (title or "")[:100],
        "source": "keyword",
    }


def build_classification_prompt(title: str, description: str) -> str:
    departments = " | ".join(DEPARTMENTS)
    return (
        "You are a municipal complaint classification system for an Indian city. "
        "Given the following civic complaint, respond with ONLY a JSON object with fields: "
        f"department (one of: {departments}), severity (integer 1-10, 10 is most severe), "
        "emergency (boolean), tags (2-4 single-word labels without #), "
        "summary (one sentence under 80 characters), suggestedTitle (under 100 characters). "
        "Rules: emergency=true only for immediate safety hazards (flooding, open manhole, live wire, fire); "
        "severity 8-10 for safety hazards or major disruption, 5-7 for significant issues affecting many citizens, "
        "1-4 for minor inconvenience. "
        f"Complaint Title: {title or ''}. Complaint Description: {description or ''}"
    )


def _safe_json_loads(raw_text: str) -> Dict[str, Any]:
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*", "", raw_text.strip()).strip()
    cleaned = re.sub(r"```$", "", cleaned).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise
        return json.loads(cleaned[start : end + 1])


def _coerce_tags(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip().lstrip("#") for item in value if str(item).strip()][:4]


def _coerce_severity(value: Any) -> int:
    try:
        return max(1, min(10, int(value)))
    except (TypeError, ValueError):
        return 4


def classify_with_gemini(title: str, description: str) -> Dict[str, Any]:
    api_key = current_app.config.get("GEMINI_API_KEY")
    if not api_key:
        raise ClassifierError("GEMINI_API_KEY is not configured")
    model_name = current_app.config.get("GEMINI_TEXT_MODEL", "gemini-2.5-flash")
    client = genai.Client(api_key=api_key)
    try:
        response = client.models.generate_content(
            model=model_name,
            contents=build_classification_prompt(title, description),
            config=types.GenerateContentConfig(response_mime_type="application/json"),
        )
        payload = _safe_json_loads(response.text or "")
    except Exception as exc:  # pragma: no cover - relies on remote service
        raise ClassifierError("Gemini classification failed") from exc
    if not isinstance(payload, dict):
        raise ClassifierError("Gemini returned a non-object payload")

    department = payload.get("department")
    emergency = payload.get("emergency")
    return {
        "department": department if department in DEPARTMENTS else "General",
        "severity": _coerce_severity(payload.get("severity")),
        "emergency": emergency if isinstance(emergency, bool) else str(emergency).lower() == "true",
        "tags": _coerce_tags(payload.get("tags")),
        "summary": str(payload.get("summary") or "")[:80],
        "suggestedTitle": str(payload.get("suggestedTitle") or title or "")[:100],
        "source": "gemini",
    }


def classify_complaint(title: str, description: str) -> Dict[str, Any]:
    """Suggest department/emergency defaults; never raises."""
    try:
        return classify_with_gemini(title, description)
    except ClassifierError as exc:
        current_app.logger.warning("Classifier unavailable, using keyword fallback", extra={"error": str(exc)})
        return keyword_classification(title, description)
