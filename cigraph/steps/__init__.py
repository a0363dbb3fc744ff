from __future__ import annotations

# Aggregator for the concrete step kinds.

from .build import ImageBuildStep, image_parameter
from .images import ImagesReadyStep
from .promotion import PromotionStep, promoted_tags, promoted_tags_with_required_images
from .source import SourceStep
from .test import TestStep


__all__ = [
    "SourceStep",
    "ImageBuildStep",
    "ImagesReadyStep",
    "TestStep",
    "PromotionStep",
    "image_parameter",
    "promoted_tags",
    "promoted_tags_with_required_images",
]
