# Vision client: wraps the Azure Computer Vision "analyze" endpoint.
# Swapping providers: subclass VisionClient and override `_request` / `_normalize`.

from __future__ import annotations

import logging
from typing import Any

import requests

from apex_height.errors import UpstreamVisionError
from apex_height.models.schemas import BoundingBox, Detection, FaceDetection, ImageAnalysis
from apex_height.services.images import UploadedImage

logger = logging.getLogger(__name__)

ANALYZE_PATH = "vision/v3.2/analyze"
VISUAL_FEATURES = "Objects,Faces"

# Keys seen for object names across detector versions
_LABEL_KEYS = ("object", "name", "label")


def _box(raw: dict[str, Any] | None) -> BoundingBox:
    """Accept both {x, y, w, h} and {left, top, width, height} rectangles."""
    if not isinstance(raw, dict):
        raise ValueError(f"missing rectangle: {raw!r}")
    if "w" in raw:
        return BoundingBox(x=raw["x"], y=raw["y"], w=raw["w"], h=raw["h"])
    return BoundingBox(x=raw["left"], y=raw["top"], w=raw["width"], h=raw["height"])


class VisionClient:
    """Object and face detection for one image per call."""

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.url = endpoint.rstrip("/") + "/" + ANALYZE_PATH
        self._api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    def detect(self, image: UploadedImage) -> ImageAnalysis:
        """Send ``image`` upstream and return its normalised detections.

        Raises UpstreamVisionError on transport failure, a non-2xx status or a
        body that does not look like an analyze response.
        """
        payload = self._request(image)
        try:
            analysis = self._normalize(image, payload)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.error("Unexpected vision response for image %d: %s", image.index, payload)
            raise UpstreamVisionError(f"malformed vision response: {exc}") from exc

        logger.info(
            "Image %d: %d objects (%s), %d faces",
            image.index,
            len(analysis.detections),
            ", ".join(d.label for d in analysis.detections) or "none",
            len(analysis.faces),
        )
        return analysis

    def _request(self, image: UploadedImage) -> dict[str, Any]:
        headers = {
            "Ocp-Apim-Subscription-Key": self._api_key,
            "Content-Type": "application/octet-stream",
        }
        try:
            resp = self._session.post(
                self.url,
                data=image.data,
                headers=headers,
                params={"visualFeatures": VISUAL_FEATURES},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Vision request for image %d failed: %s", image.index, exc)
            raise UpstreamVisionError(f"vision request failed: {exc}") from exc

        if not resp.ok:
            logger.error("Vision API returned %d for image %d: %s", resp.status_code, image.index, resp.text)
            raise UpstreamVisionError(
                f"vision API returned {resp.status_code}: {resp.text[:500]}",
                upstream_status=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            logger.error("Vision API returned non-JSON body for image %d: %s", image.index, resp.text[:500])
            raise UpstreamVisionError("vision API returned a non-JSON body", upstream_status=resp.status_code) from exc
        if not isinstance(data, dict):
            raise UpstreamVisionError("vision API returned an unexpected body", upstream_status=resp.status_code)
        return data

    def _normalize(self, image: UploadedImage, payload: dict[str, Any]) -> ImageAnalysis:
        objects = payload["objects"]
        if not isinstance(objects, list):
            raise ValueError("'objects' is not a list")

        detections: list[Detection] = []
        for obj in objects:
            label = next((obj[k] for k in _LABEL_KEYS if obj.get(k)), None)
            if label is None:
                raise ValueError(f"object without a label: {obj!r}")
            parent = obj.get("parent")
            detections.append(
                Detection(
                    source_image_index=image.index,
                    label=str(label),
                    bounding_box=_box(obj.get("rectangle") or obj.get("boundingBox")),
                    confidence=obj.get("confidence"),
                    parent=parent.get("object") if isinstance(parent, dict) else None,
                )
            )

        faces: list[FaceDetection] = []
        for face in payload.get("faces") or []:
            faces.append(
                FaceDetection(
                    source_image_index=image.index,
                    age=face.get("age"),
                    sex_label=face.get("gender") or face.get("sex"),
                    bounding_box=_box(face.get("faceRectangle") or face.get("rectangle")),
                )
            )

        metadata = payload.get("metadata") or {}
        return ImageAnalysis(
            source_image_index=image.index,
            width=metadata.get("width") or image.width,
            height=metadata.get("height") or image.height,
            detections=detections,
            faces=faces,
        )
