"""
Narrative report built from pre-aggregated dashboard numbers.

Only totals and distributions are sent to the text-generation service,
never individual work-log rows.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODEL = "gemini-2.5-flash"
TOP_CLIENTS = 5
CODE_FENCE_RE = re.compile(r"```(?:json)?")

FALLBACK_RESULT = {
    "summary": "Could not generate the automatic analysis.",
    "risks": [],
    "recommendations": ["Check your API key and try again."],
}

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING"},
        "risks": {"type": "ARRAY", "items": {"type": "STRING"}},
        "recommendations": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
}


class NarrativeError(RuntimeError):
    """Raised when the narrative service cannot be called or fails."""


def build_summary_payload(stats: dict[str, Any]) -> dict[str, Any]:
    """Reduce ``dashboard.compute_stats`` output to what the prompt needs."""
    kpi = stats["kpi"]
    charts = stats["charts"]
    return {
        "total_hours": kpi["total_hours"],
        "active_consultants": kpi["total_consultants"],
        "top_client": kpi["top_client"],
        "client_distribution": charts["by_client"][:TOP_CLIENTS],
        "consultant_load": [
            {"name": row["name"], "hours": row["total"]} for row in charts["consultant_by_client"]
        ],
    }


def build_prompt(payload: dict[str, Any]) -> str:
    return (
        "Act as an expert project management consultant and senior data analyst.\n"
        "Analyse the following hours-worked data from a consulting team:\n"
        f"{json.dumps(payload, ensure_ascii=False)}\n\n"
        "Return a short executive report as JSON with exactly this structure:\n"
        "{\n"
        '  "summary": "One paragraph on the current situation (max 40 words).",\n'
        '  "risks": ["2-3 potential risks, e.g. overload, client dependency, low productivity."],\n'
        '  "recommendations": ["2-3 strategic recommendations to improve."]\n'
        "}\n\n"
        "Reply ONLY with the JSON."
    )


def parse_analysis_response(text: str) -> dict[str, Any]:
    """Parse the model reply, tolerating Markdown code fences.

    Malformed replies produce a fixed fallback result instead of an error.
    """
    clean = CODE_FENCE_RE.sub("", text or "").strip()
    try:
        parsed = json.loads(clean)
    except json.JSONDecodeError:
        logger.error("Failed to parse narrative JSON response")
        return dict(FALLBACK_RESULT)
    if not isinstance(parsed, dict):
        logger.error("Narrative response was JSON but not an object")
        return dict(FALLBACK_RESULT)
    return {
        "summary": str(parsed.get("summary", "")),
        "risks": [str(item) for item in parsed.get("risks") or []],
        "recommendations": [str(item) for item in parsed.get("recommendations") or []],
    }


def _response_text(body: dict[str, Any]) -> str:
    try:
        parts = body["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as exc:
        raise NarrativeError("Narrative service returned no candidates") from exc
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


def request_analysis(
    stats: dict[str, Any],
    api_key: Optional[str],
    model: str = DEFAULT_MODEL,
    timeout: float = 60,
    session: Optional[requests.Session] = None,
) -> dict[str, Any]:
    if not api_key:
        raise NarrativeError("API key is missing. Set GEMINI_API_KEY or gemini_api_key in the config file.")

    prompt = build_prompt(build_summary_payload(stats))
    body = {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": RESPONSE_SCHEMA,
        },
    }
    http = session or requests
    url = GEMINI_ENDPOINT.format(model=model)
    try:
        response = http.post(
            url,
            json=body,
            headers={"x-goog-api-key": api_key},
            timeout=timeout,
        )
        response.raise_for_status()
        payload = response.json()
    except requests.RequestException as exc:
        logger.error("Narrative request failed: %s", exc)
        raise NarrativeError(f"Narrative service request failed: {exc}") from exc
    except ValueError as exc:
        raise NarrativeError("Narrative service returned a non-JSON body") from exc

    logger.info("Narrative report generated with %s", model)
    return parse_analysis_response(_response_text(payload))
