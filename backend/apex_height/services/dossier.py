# Dossier assembly: runs detection over every submitted image, in order.

from __future__ import annotations

import logging

from apex_height.models.schemas import Dossier
from apex_height.services.images import UploadedImage
from apex_height.services.vision import VisionClient

logger = logging.getLogger(__name__)

SUBJECT_LABEL = "person"


class DossierAssembler:
    def __init__(self, vision: VisionClient, subject_label: str = SUBJECT_LABEL) -> None:
        self.vision = vision
        self.subject_label = subject_label.lower()

    def assemble(self, images: list[UploadedImage]) -> Dossier:
        """One detection call per image, sequentially in submission order.

        UpstreamVisionError from any call propagates; no partial dossier is
        returned.
        """
        entries = [self.vision.detect(image) for image in images]
        total = sum(len(e.detections) for e in entries)
        logger.info("Dossier assembled: %d images, %d detections", len(entries), total)
        return Dossier(images=entries)

    def contains_subject(self, dossier: Dossier) -> bool:
        return any(
            det.label.lower() == self.subject_label
            for entry in dossier.images
            for det in entry.detections
        )
