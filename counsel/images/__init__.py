"""Image-generation quickstart client."""

from .client import ImageClient, ImageGenerationError

__all__ = ["ImageClient", "ImageGenerationError"]
