"""Backend utilities"""
from .images import ImageLoadError, encode_images
from .logger import get_logger, setup_logging

__all__ = ["ImageLoadError", "encode_images", "get_logger", "setup_logging"]
