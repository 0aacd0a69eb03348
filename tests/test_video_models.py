"""
Tests for render request models and backend payloads.
"""

import pytest
from pydantic import ValidationError

from vidwizard.content_generation.content_models import CaptionSegment
from vidwizard.utils.captions import DEFAULT_CAPTION_STYLES
from vidwizard.video_assembly.timeline_builder import allocate_timeline
from vidwizard.video_assembly.video_models import (
    MultiImageRequest, SingleImageRequest, StockVideoRequest, TimelineAsset, normalize_asset_url,
    parse_render_request,
)

ORIGIN = "http://localhost:3001"


def base(**overrides):
    data = {
        "name": "Demo",
        "voiceover_url": f"{ORIGIN}/temp/voice.mp3",
        "voiceover_duration": 10.0,
    }
    data.update(overrides)
    return data


class TestParsing:

    def test_discriminates_on_flow_type(self):
        single = parse_render_request(base(flow_type="single-image", image_url="/uploads/a.png"))
        multi = parse_render_request(base(flow_type="multi-image", images=[{"image_url": "a.png", "duration": 5}]))
        stock = parse_render_request(base(flow_type="stock-video", videos=[{"video_url": "clip.mp4"}]))

        assert isinstance(single, SingleImageRequest)
        assert isinstance(multi, MultiImageRequest)
        assert isinstance(stock, StockVideoRequest)

    def test_unknown_flow_type(self):
        with pytest.raises(ValidationError):
            parse_render_request(base(flow_type="slideshow"))

    def test_variant_fields_required(self):
        with pytest.raises(ValidationError):
            parse_render_request(base(flow_type="multi-image", images=[]))

    def test_voiceover_duration_must_be_positive(self):
        with pytest.raises(ValidationError):
            parse_render_request(base(flow_type="single-image", image_url="a.png", voiceover_duration=0))

    def test_requests_are_frozen(self):
        request = SingleImageRequest(**base(image_url="a.png"))
        with pytest.raises(ValidationError):
            request.name = "Changed"


class TestPayloads:

    def test_normalize_asset_url(self):
        assert normalize_asset_url(f"{ORIGIN}/uploads/a.png", ORIGIN) == "/uploads/a.png"
        assert normalize_asset_url("https://cdn.example.com/a.png", ORIGIN) == "https://cdn.example.com/a.png"
        assert normalize_asset_url(None, ORIGIN) == ""
        assert normalize_asset_url(f"{ORIGIN}/a.png", None) == f"{ORIGIN}/a.png"

    def test_single_image_payload(self):
        request = SingleImageRequest(**base(
            image_url=f"{ORIGIN}/uploads/cover.png",
            captions_enabled=True,
            caption_style=DEFAULT_CAPTION_STYLES["modern"],
            captions=[CaptionSegment(text="Hi", start_time=0, end_time=1)],
        ))

        payload = request.to_payload(ORIGIN)

        assert payload["flowType"] == "single-image"
        assert payload["imageUrl"] == "/uploads/cover.png"
        assert payload["voiceoverUrl"] == "/temp/voice.mp3"
        assert payload["voiceoverDuration"] == 10.0
        assert payload["captionsEnabled"] is True
        assert payload["captionStyle"]["fontSize"] == "large"
        assert payload["captions"] == [{"text": "Hi", "startTime": 0, "endTime": 1}]

    def test_timeline_overrides_image_durations(self):
        slots = allocate_timeline([TimelineAsset(id="a"), TimelineAsset(id="b"), TimelineAsset(id="c")], 10)
        request = MultiImageRequest(**base(
            images=[{"image_url": f"img{i}.png", "duration": 3} for i in range(3)],
            timeline=slots,
        ))

        payload = request.to_payload(ORIGIN)

        assert [img["duration"] for img in payload["images"]] == [4, 4, 2]

    def test_stock_video_payload(self):
        request = StockVideoRequest(**base(
            videos=[{"video_url": f"{ORIGIN}/stock/a.mp4", "start_time": 1.5}, {"video_url": "b.mp4"}],
            loop=False,
        ))

        payload = request.to_payload(ORIGIN)

        assert payload["loop"] is False
        assert payload["videos"] == [{"videoUrl": "/stock/a.mp4", "startTime": 1.5}, {"videoUrl": "b.mp4"}]
        assert "captionStyle" not in payload
