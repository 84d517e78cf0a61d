# photoarchiver/services/enrichment.py
# Optional pre-upload tagging: caption/tags from a vision service and
# identified people from a face service, written into the upload metadata.
# Both services are protocols; nothing is called unless an implementation is passed.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from photoarchiver.services.costs import CostEstimator
from photoarchiver.services.files import UploadItem
from photoarchiver.utils.media_types import JPEG_EXT
from photoarchiver.utils.thumbs import ThumbnailGenerator

LOGGER = logging.getLogger("photoarchiver.enrichment")

ANALYSIS_SIZE = 1024


@dataclass(frozen=True)
class Caption:
    text: str
    confidence: float


@dataclass(frozen=True)
class ImageDescription:
    captions: List[Caption] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


class VisionService(Protocol):
    def describe(self, image_bytes: bytes) -> ImageDescription: ...


class FaceService(Protocol):
    def detect_and_identify(self, image_bytes: bytes) -> List[str]:
        """Person ids of the recognized faces, best candidate per face."""
        ...


class Enricher:
    def __init__(
        self,
        thumbnailer: ThumbnailGenerator,
        vision: Optional[VisionService] = None,
        face: Optional[FaceService] = None,
        costs: Optional[CostEstimator] = None,
    ) -> None:
        self.thumbnailer = thumbnailer
        self.vision = vision
        self.face = face
        self.costs = costs or CostEstimator()

    @property
    def enabled(self) -> bool:
        return self.vision is not None or self.face is not None

    def enrich(self, item: UploadItem) -> None:
        """Add Caption/Tags/People to item.metadata; never raises."""
        if not self.enabled or item.file.extension not in JPEG_EXT:
            return

        if self.vision is not None:
            try:
                LOGGER.debug("Describing %s", item.file)
                description = self.vision.describe(self._analysis_image(item))
                self.costs.add_describe()
                if description.captions:
                    best = max(description.captions, key=lambda c: c.confidence)
                    item.metadata["Caption"] = best.text
                if description.tags:
                    item.metadata["Tags"] = ", ".join(description.tags)
            except Exception as e:
                LOGGER.warning("Describing %s failed: %s", item.file.name, e)

        if self.face is not None:
            try:
                LOGGER.debug("Detecting faces in %s", item.file)
                people = self.face.detect_and_identify(self._analysis_image(item))
                # detection and identification are billed separately
                self.costs.add_face()
                self.costs.add_face()
                if people:
                    item.metadata["People"] = ", ".join(people)
            except Exception as e:
                LOGGER.warning("Face detection for %s failed: %s", item.file.name, e)

    def _analysis_image(self, item: UploadItem) -> bytes:
        return self.thumbnailer.generate(item.data, ANALYSIS_SIZE, ANALYSIS_SIZE)
