"""
Video Assembly Data Models

Pydantic models for timelines and the render requests sent to the render backend.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from enum import Enum

from ..content_generation.content_models import CaptionSegment, CaptionStyle


class VideoQuality(str, Enum):
    """Video quality presets"""
    DRAFT = "draft"
    STANDARD = "standard"
    HIGH = "high"
    ULTRA = "ultra"


class BlendMode(str, Enum):
    NORMAL = "normal"
    MULTIPLY = "multiply"
    SCREEN = "screen"
    OVERLAY = "overlay"
    DARKEN = "darken"
    LIGHTEN = "lighten"
    COLOR_DODGE = "color-dodge"
    COLOR_BURN = "color-burn"


class TimelineAsset(BaseModel):
    """A visual asset waiting for a place on the timeline"""
    id: str
    native_duration: Optional[float] = None  # None for stills or unprobed clips


class TimelineSlot(BaseModel):
    """Placement of one asset in the final timeline"""
    model_config = ConfigDict(frozen=True)

    asset_ref: str
    target_duration: float
    start_offset: float
    end_offset: float
    native_duration: Optional[float] = None
    needs_loop: bool = False
    needs_trim: bool = False


class TimingPreview(BaseModel):
    """Summary shown before rendering"""
    total_duration: float
    slot_count: int
    average_duration: float
    loop_count: int = 0
    trim_count: int = 0


class Overlay(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    file_url: str
    type: Literal["image", "video"] = "image"
    blend_mode: BlendMode = BlendMode.NORMAL
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)


class ImageClip(BaseModel):
    model_config = ConfigDict(frozen=True)

    image_url: str
    duration: float = Field(gt=0)


class VideoClip(BaseModel):
    model_config = ConfigDict(frozen=True)

    video_url: str
    start_time: Optional[float] = None
    duration: Optional[float] = None


def normalize_asset_url(url: Optional[str], asset_origin: Optional[str]) -> str:
    """Strip the backend origin so the renderer resolves its own files locally."""
    url = (url or "").strip()
    if asset_origin and url.startswith(asset_origin):
        return url[len(asset_origin):]
    return url


class _BaseRenderRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "Untitled project"
    voiceover_url: str
    voiceover_duration: float = Field(gt=0)
    script: Optional[str] = None
    overlays: List[Overlay] = Field(default_factory=list)
    captions_enabled: bool = False
    caption_style: Optional[CaptionStyle] = None
    captions: List[CaptionSegment] = Field(default_factory=list)
    timeline: List[TimelineSlot] = Field(default_factory=list)
    video_quality: VideoQuality = VideoQuality.STANDARD

    def _base_payload(self, asset_origin: Optional[str]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "voiceoverUrl": normalize_asset_url(self.voiceover_url, asset_origin),
            "voiceoverDuration": self.voiceover_duration,
            "overlays": [
                {
                    "id": o.id,
                    "fileUrl": normalize_asset_url(o.file_url, asset_origin),
                    "type": o.type,
                    "blendMode": o.blend_mode.value,
                    "opacity": o.opacity,
                }
                for o in self.overlays
            ],
            "captionsEnabled": self.captions_enabled,
            "script": self.script,
            "videoQuality": self.video_quality.value,
        }
        if self.caption_style is not None:
            payload["captionStyle"] = {
                "fontSize": self.caption_style.font_size.value,
                "color": self.caption_style.color,
                "backgroundColor": self.caption_style.background_color,
                "position": self.caption_style.position.value,
                "fontFamily": self.caption_style.font_family,
            }
        if self.captions:
            payload["captions"] = [
                {"text": c.text, "startTime": c.start_time, "endTime": c.end_time} for c in self.captions
            ]
        return payload

    def _slot_duration(self, index: int, fallback: Optional[float]) -> Optional[float]:
        if index < len(self.timeline):
            return self.timeline[index].target_duration
        return fallback


class SingleImageRequest(_BaseRenderRequest):
    flow_type: Literal["single-image"] = "single-image"
    image_url: str

    def to_payload(self, asset_origin: Optional[str] = None) -> Dict[str, Any]:
        payload = self._base_payload(asset_origin)
        payload["flowType"] = self.flow_type
        payload["imageUrl"] = normalize_asset_url(self.image_url, asset_origin)
        return payload


class MultiImageRequest(_BaseRenderRequest):
    flow_type: Literal["multi-image"] = "multi-image"
    images: List[ImageClip] = Field(min_length=1)

    def to_payload(self, asset_origin: Optional[str] = None) -> Dict[str, Any]:
        payload = self._base_payload(asset_origin)
        payload["flowType"] = self.flow_type
        payload["images"] = [
            {
                "imageUrl": normalize_asset_url(img.image_url, asset_origin),
                "duration": self._slot_duration(i, img.duration),
            }
            for i, img in enumerate(self.images)
        ]
        return payload


class StockVideoRequest(_BaseRenderRequest):
    flow_type: Literal["stock-video"] = "stock-video"
    videos: List[VideoClip] = Field(min_length=1)
    loop: bool = True

    def to_payload(self, asset_origin: Optional[str] = None) -> Dict[str, Any]:
        payload = self._base_payload(asset_origin)
        payload["flowType"] = self.flow_type
        payload["loop"] = self.loop
        videos = []
        for i, clip in enumerate(self.videos):
            entry: Dict[str, Any] = {"videoUrl": normalize_asset_url(clip.video_url, asset_origin)}
            if clip.start_time is not None:
                entry["startTime"] = clip.start_time
            duration = self._slot_duration(i, clip.duration)
            if duration is not None:
                entry["duration"] = duration
            videos.append(entry)
        payload["videos"] = videos
        return payload


RenderRequest = Annotated[
    Union[SingleImageRequest, MultiImageRequest, StockVideoRequest],
    Field(discriminator="flow_type"),
]

_render_request_adapter = TypeAdapter(RenderRequest)


def parse_render_request(data: Dict[str, Any]) -> Union[SingleImageRequest, MultiImageRequest, StockVideoRequest]:
    """Validate a plain dict (e.g. a request file) into the matching request variant"""
    return _render_request_adapter.validate_python(data)
