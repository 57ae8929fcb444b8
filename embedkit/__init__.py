"""Image preprocessing pipelines, embedding extraction, model options and cache helpers."""

__version__ = "0.1.0"
__all__ = ["common", "options", "preprocessing", "image_embedding"]