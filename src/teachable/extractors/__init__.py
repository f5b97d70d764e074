"""Feature extractor adapters and shared extractor resources."""

from .base import (
    AsyncCallAdapter,
    BatchModel,
    BatchModelAdapter,
    ExtractionError,
    FeatureExtractionAdapter,
    adapter_for,
    normalize_feature_output,
)
from .hashing import HashingTextExtractor
from .shared import SharedResource, SharedResourceRegistry, default_registry

__all__ = [
    "AsyncCallAdapter",
    "BatchModel",
    "BatchModelAdapter",
    "ExtractionError",
    "FeatureExtractionAdapter",
    "HashingTextExtractor",
    "SharedResource",
    "SharedResourceRegistry",
    "adapter_for",
    "default_registry",
    "normalize_feature_output",
]
