# API and pipeline models (Pydantic schemas)
# Wire format is camelCase; Python attributes are snake_case.

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BoundingBox(CamelModel):
    x: float
    y: float
    w: float
    h: float


class Detection(CamelModel):
    source_image_index: int
    label: str
    bounding_box: BoundingBox
    confidence: float | None = None
    parent: str | None = Field(None, description="Parent category reported by the detector")


class FaceDetection(CamelModel):
    source_image_index: int
    age: int | None = None
    sex_label: str | None = None
    bounding_box: BoundingBox


class ImageAnalysis(CamelModel):
    source_image_index: int
    width: int | None = None
    height: int | None = None
    detections: list[Detection] = []
    faces: list[FaceDetection] = []


class Dossier(CamelModel):
    images: list[ImageAnalysis]


class QuotaState(CamelModel):
    remaining: int
    capacity: int
    period_reset_at: datetime | None = None


class VisualizationData(CamelModel):
    source_image_index: int
    person_box: BoundingBox | None = None
    reference_box: BoundingBox | None = None


class AnalysisReport(CamelModel):
    """Height report produced by the reasoning service.

    Only the first four fields are required. Anything else the model adds is
    kept and passed through to the caller. A malformed ``visualizationData``
    is dropped rather than failing the whole report.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    estimation: str = Field(min_length=1)
    methodology: str = Field(min_length=1)
    confidence_score: str | float
    caveats: str | list[str]
    posture_correction: str | None = None
    demographic_inference: Any = None
    plausibility_adjustment: Any = None
    visualization_data: VisualizationData | None = None

    @field_validator("visualization_data", mode="wrap")
    @classmethod
    def _drop_malformed_visualization(cls, value, handler):
        try:
            return handler(value)
        except ValidationError as exc:
            logger.warning("Dropping malformed visualizationData: %s", exc)
            return None


class AnalyzeRequest(BaseModel):
    images: list[str]


class UsageResponse(CamelModel):
    remaining: int
    capacity: int
    resets_at: datetime | None = None


class ErrorResponse(BaseModel):
    error: str
