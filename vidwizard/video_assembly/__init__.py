"""
Video Assembly

Timeline allocation and render request models:
- Even or manual distribution of assets over the voiceover
- Loop / trim decisions per asset
- Flow-specific render requests (single image, multiple images, stock footage)
"""

from .timeline_builder import allocate_timeline, timing_preview
from .video_models import (
    TimelineAsset, TimelineSlot, RenderRequest,
    SingleImageRequest, MultiImageRequest, StockVideoRequest, parse_render_request
)

__all__ = [
    'allocate_timeline',
    'timing_preview',
    'TimelineAsset',
    'TimelineSlot',
    'RenderRequest',
    'SingleImageRequest',
    'MultiImageRequest',
    'StockVideoRequest',
    'parse_render_request'
]
