"""
Creative pipeline for UGC video ads: prompt templates, script generation,
the session state machine and the final video stitcher.
"""

__version__ = "0.1.0"

from .error_handler import PipelineError, ErrorCode, should_retry
from .asset_manager import AssetManager

__all__ = [
    "AssetManager",
    "ErrorCode",
    "PipelineError",
    "should_retry",
]
