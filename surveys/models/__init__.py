"""Survey response models used by API handlers."""

from .responses import ResponseFieldMap, ResponseShapeError, normalize_response, normalize_responses

__all__ = ["ResponseFieldMap", "ResponseShapeError", "normalize_response", "normalize_responses"]
