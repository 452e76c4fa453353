# Analyze orchestrator: admission, quota, detection, subject check, reasoning.

from __future__ import annotations

import asyncio
import logging
import time

from apex_height.errors import (
    AnalysisError,
    AnalysisTimeout,
    InternalError,
    NoSubjectDetected,
    QuotaExhausted,
)
from apex_height.models.schemas import AnalysisReport
from apex_height.services.dossier import DossierAssembler
from apex_height.services.images import UploadedImage, load_uploaded_images
from apex_height.services.knowledge_base import ReferenceKnowledgeBase
from apex_height.services.quota import QuotaTracker
from apex_height.services.reasoning import ReasoningClient

logger = logging.getLogger(__name__)


class AnalyzeOrchestrator:
    """Runs one analysis request end to end.

    A quota unit is reserved before any upstream call and stays spent only
    when a report is returned. Every other outcome (upstream failure, no
    subject, timeout, cancellation, unexpected error) refunds it exactly once.
    The blocking upstream clients run in worker threads so the event loop
    stays free while they wait on the network.
    """

    def __init__(
        self,
        quota: QuotaTracker,
        assembler: DossierAssembler,
        reasoner: ReasoningClient,
        knowledge_base: ReferenceKnowledgeBase,
        max_images: int = 4,
        max_image_bytes: int = 10 * 1024 * 1024,
        timeout: float | None = 90,
    ) -> None:
        self.quota = quota
        self.assembler = assembler
        self.reasoner = reasoner
        self.knowledge_base = knowledge_base
        self.max_images = max_images
        self.max_image_bytes = max_image_bytes
        self.timeout = timeout

    async def analyze(self, payloads: list[str] | None) -> AnalysisReport:
        # 1. Admission (no quota involved yet)
        images = await asyncio.to_thread(
            load_uploaded_images, payloads, self.max_images, self.max_image_bytes
        )

        # 2. Reserve
        if not self.quota.try_reserve():
            raise QuotaExhausted()

        start_time = time.perf_counter()
        billable = False
        try:
            report = await asyncio.wait_for(self._run_pipeline(images), timeout=self.timeout)
            billable = True
        except AnalysisError as exc:
            logger.warning("Analysis failed (%s): %s", type(exc).__name__, exc)
            raise
        except asyncio.TimeoutError as exc:
            logger.error("Analysis exceeded %ss deadline", self.timeout)
            raise AnalysisTimeout() from exc
        except Exception as exc:
            logger.exception("Unexpected error in analysis pipeline")
            raise InternalError() from exc
        finally:
            if not billable:
                self.quota.refund()

        logger.info(
            "Analysis of %d image(s) complete in %.1fs",
            len(images), time.perf_counter() - start_time,
        )
        return report

    async def _run_pipeline(self, images: list[UploadedImage]) -> AnalysisReport:
        # 3. Detect
        dossier = await asyncio.to_thread(self.assembler.assemble, images)

        # 4. Subject check
        if not self.assembler.contains_subject(dossier):
            raise NoSubjectDetected()

        # 5. Reason
        return await asyncio.to_thread(self.reasoner.reason, dossier, self.knowledge_base)
