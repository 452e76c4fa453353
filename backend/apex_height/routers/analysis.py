# Analysis router: accepts 1-4 photos as data URIs, runs the detection +
# reasoning pipeline, and returns the height report. Also reports quota usage.

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from apex_height.config import Settings, load_settings
from apex_height.models.schemas import AnalysisReport, AnalyzeRequest, ErrorResponse, UsageResponse
from apex_height.services.analyzer import AnalyzeOrchestrator
from apex_height.services.dossier import DossierAssembler
from apex_height.services.knowledge_base import load_knowledge_base
from apex_height.services.quota import QuotaTracker
from apex_height.services.reasoning import ReasoningClient, load_protocol_prompt
from apex_height.services.vision import VisionClient

logger = logging.getLogger(__name__)
router = APIRouter()

# Module-level singletons (initialised lazily, or eagerly by the startup hook)
_settings: Settings | None = None
_quota_tracker: QuotaTracker | None = None
_analyzer: AnalyzeOrchestrator | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_quota_tracker() -> QuotaTracker:
    global _quota_tracker
    if _quota_tracker is None:
        settings = get_settings()
        _quota_tracker = QuotaTracker(
            capacity=settings.quota_capacity,
            period_seconds=settings.quota_period_seconds,
        )
    return _quota_tracker


def get_analyzer() -> AnalyzeOrchestrator:
    global _analyzer
    if _analyzer is None:
        settings = get_settings()
        vision = VisionClient(
            endpoint=settings.azure_vision_endpoint,
            api_key=settings.azure_vision_key,
            timeout=settings.vision_timeout,
        )
        reasoner = ReasoningClient(
            api_key=settings.gemini_api_key,
            system_prompt=load_protocol_prompt(settings.protocol_prompt_path),
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.reasoning_timeout,
        )
        _analyzer = AnalyzeOrchestrator(
            quota=get_quota_tracker(),
            assembler=DossierAssembler(vision),
            reasoner=reasoner,
            knowledge_base=load_knowledge_base(settings.knowledge_base_path),
            max_images=settings.max_images,
            max_image_bytes=settings.max_image_bytes,
            timeout=settings.analysis_timeout,
        )
    return _analyzer


_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "No/invalid images, or no person detected"},
    429: {"model": ErrorResponse, "description": "Quota for the current period is used up"},
    500: {"model": ErrorResponse, "description": "Upstream or internal failure"},
}


@router.post(
    "/analyze",
    response_model=AnalysisReport,
    response_model_exclude_unset=True,
    responses=_ERROR_RESPONSES,
)
async def analyze_images(
    request: AnalyzeRequest,
    analyzer: AnalyzeOrchestrator = Depends(get_analyzer),
):
    """Estimate the height of the person shown in up to four photos."""
    logger.info("Analysis requested for %d image(s)", len(request.images))
    return await analyzer.analyze(request.images)


@router.get("/usage", response_model=UsageResponse)
async def usage(quota: QuotaTracker = Depends(get_quota_tracker)):
    """How many analyses are left in the current period."""
    state = quota.snapshot()
    return UsageResponse(
        remaining=state.remaining,
        capacity=state.capacity,
        resets_at=state.period_reset_at,
    )
