# Reasoning client: sends the dossier and knowledge base to Gemini and
# validates the JSON height report it sends back.

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

import requests
from pydantic import ValidationError

from apex_height.errors import ConfigError, UpstreamReasoningError
from apex_height.models.schemas import AnalysisReport, Dossier
from apex_height.services.knowledge_base import ReferenceKnowledgeBase

logger = logging.getLogger(__name__)

MODEL_ACKNOWLEDGEMENT = "Apex Engine online. Awaiting data dossier for fusion analysis."

TASK_INSTRUCTION = (
    "**Task:** Execute the Apex Fusion Protocol. Synthesize the data to produce a single, "
    "consolidated height estimation report in the specified JSON format."
)

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(?P<body>.*?)\s*```$", re.DOTALL)


def load_protocol_prompt(path: str | Path) -> str:
    try:
        text = Path(path).read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ConfigError(f"Cannot read protocol prompt {path}: {exc}") from exc
    if not text:
        raise ConfigError(f"Protocol prompt {path} is empty")
    return text


def build_reasoning_prompt(dossier: Dossier, knowledge_base: ReferenceKnowledgeBase) -> str:
    dossier_json = json.dumps(dossier.model_dump(by_alias=True, exclude_none=True)["images"], indent=2)
    kb_json = json.dumps(knowledge_base.to_prompt_dict(), indent=2)
    return (
        f"**Data Dossier (analysisDossier):** {dossier_json}\n"
        f"**Known Object Dimensions Database (KNOWN_OBJECT_DIMENSIONS, version {knowledge_base.version}):** {kb_json}\n"
        f"{TASK_INSTRUCTION}"
    )


def parse_report(text: str) -> AnalysisReport:
    """Strictly parse the model's reply. Anything short of a valid report raises."""
    body = text.strip()
    fenced = _CODE_FENCE_RE.match(body)
    if fenced:
        body = fenced.group("body")

    try:
        data = json.loads(body)
    except ValueError as exc:
        raise UpstreamReasoningError(f"reasoning reply is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise UpstreamReasoningError(f"reasoning reply is a JSON {type(data).__name__}, expected an object")

    try:
        return AnalysisReport.model_validate(data)
    except ValidationError as exc:
        raise UpstreamReasoningError(f"reasoning reply is not a valid height report: {exc}") from exc


class ReasoningClient:
    """Gemini ``generateContent`` client that returns a validated AnalysisReport."""

    def __init__(
        self,
        api_key: str,
        system_prompt: str,
        model: str = "gemini-1.5-flash-latest",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60,
        session: requests.Session | None = None,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}/models/{model}:generateContent"
        self.system_prompt = system_prompt
        self._api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    def build_payload(self, dossier: Dossier, knowledge_base: ReferenceKnowledgeBase) -> dict[str, Any]:
        return {
            "contents": [
                {"role": "user", "parts": [{"text": self.system_prompt}]},
                {"role": "model", "parts": [{"text": MODEL_ACKNOWLEDGEMENT}]},
                {"role": "user", "parts": [{"text": build_reasoning_prompt(dossier, knowledge_base)}]},
            ],
            "generationConfig": {"responseMimeType": "application/json"},
        }

    def reason(self, dossier: Dossier, knowledge_base: ReferenceKnowledgeBase) -> AnalysisReport:
        payload = self.build_payload(dossier, knowledge_base)
        try:
            resp = self._session.post(
                self.url,
                json=payload,
                headers={"x-goog-api-key": self._api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Reasoning request failed: %s", exc)
            raise UpstreamReasoningError(f"reasoning request failed: {exc}") from exc

        if not resp.ok:
            logger.error("Reasoning API returned %d: %s", resp.status_code, resp.text)
            raise UpstreamReasoningError(
                f"reasoning API returned {resp.status_code}: {resp.text[:500]}",
                upstream_status=resp.status_code,
            )

        try:
            text = resp.json()["candidates"][0]["content"]["parts"][0]["text"]
            if not isinstance(text, str):
                raise TypeError(f"candidate text is {type(text).__name__}")
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.error("Reasoning API returned no candidate text: %s", resp.text[:1000])
            raise UpstreamReasoningError("reasoning API returned no candidate text", upstream_status=resp.status_code) from exc

        try:
            report = parse_report(text)
        except UpstreamReasoningError:
            logger.error("Rejecting reasoning reply: %s", text[:1000])
            raise

        logger.info("Reasoning report received: %s (confidence %s)", report.estimation, report.confidence_score)
        return report
