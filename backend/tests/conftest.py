# In backend/ folder

import base64
import json
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add backend/ directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from apex_height.models.schemas import (  # noqa: E402
    AnalysisReport,
    BoundingBox,
    Detection,
    Dossier,
    ImageAnalysis,
)
from apex_height.services.knowledge_base import ReferenceKnowledgeBase  # noqa: E402


def make_png(width: int = 64, height: int = 48) -> bytes:
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[:, :, 2] = 255
    ok, buf = cv2.imencode(".png", img)
    assert ok
    return buf.tobytes()


def make_data_uri(width: int = 64, height: int = 48) -> str:
    return "data:image/png;base64," + base64.b64encode(make_png(width, height)).decode()


def detection(index: int, label: str, x: float = 10, y: float = 10, w: float = 20, h: float = 40) -> Detection:
    return Detection(
        source_image_index=index,
        label=label,
        bounding_box=BoundingBox(x=x, y=y, w=w, h=h),
        confidence=0.9,
    )


class FakeVision:
    """Stands in for VisionClient: returns canned labels per image index."""

    def __init__(self, labels_by_index=None, fail_on=None):
        self.labels_by_index = labels_by_index or {}
        self.fail_on = fail_on
        self.calls = []

    def detect(self, image):
        from apex_height.errors import UpstreamVisionError

        self.calls.append(image.index)
        if self.fail_on is not None and image.index == self.fail_on:
            raise UpstreamVisionError("vision API returned 401: unauthorized", upstream_status=401)
        labels = self.labels_by_index.get(image.index, [])
        return ImageAnalysis(
            source_image_index=image.index,
            width=image.width,
            height=image.height,
            detections=[detection(image.index, label) for label in labels],
        )


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


class FakeReasoner:
    def __init__(self, report=None, error=None):
        self.report = report
        self.error = error
        self.calls = []

    def reason(self, dossier, knowledge_base):
        self.calls.append((dossier, knowledge_base))
        if self.error is not None:
            raise self.error
        return self.report


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def data_uri():
    return make_data_uri()


@pytest.fixture
def knowledge_base():
    return ReferenceKnowledgeBase.from_dict({
        "version": "test-1",
        "tiers": {
            "TIER_S": {"credit_card": {"width_mm": 85.60, "height_mm": 53.98}},
            "TIER_D": {"human_body_parts": {"notes": "Highly individual."}},
        },
    })


@pytest.fixture
def report():
    return AnalysisReport.model_validate({
        "estimation": "175 cm (5 ft 9 in)",
        "methodology": "Credit card (TIER_S, 85.60 mm wide) used as scale reference.",
        "confidenceScore": "85%",
        "caveats": ["Slight perspective distortion"],
        "visualizationData": {
            "sourceImageIndex": 0,
            "personBox": {"x": 10, "y": 10, "w": 20, "h": 40},
            "referenceBox": {"x": 40, "y": 30, "w": 8, "h": 5},
        },
    })


@pytest.fixture
def person_dossier():
    return Dossier(images=[
        ImageAnalysis(source_image_index=0, detections=[detection(0, "person"), detection(0, "credit card")]),
    ])
