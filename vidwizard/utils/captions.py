from pathlib import Path
from typing import Dict, List, Optional
import logging

from ..content_generation.content_models import CaptionSegment, CaptionStyle, CaptionFontSize, CaptionPosition

logger = logging.getLogger(__name__)

DEFAULT_CAPTION_STYLES: Dict[str, CaptionStyle] = {
    "classic": CaptionStyle(font_size=CaptionFontSize.MEDIUM, color="#FFFFFF",
                            background_color="#000000", font_family="Arial"),
    "modern": CaptionStyle(font_size=CaptionFontSize.LARGE, color="#FFFFFF",
                           background_color="#1a1a1a", font_family="Helvetica"),
    "minimal": CaptionStyle(font_size=CaptionFontSize.SMALL, color="#FFFFFF", font_family="Arial"),
    "dramatic": CaptionStyle(font_size=CaptionFontSize.LARGE, color="#FFFF00", background_color="#000000",
                             position=CaptionPosition.CENTER, font_family="Impact"),
}

_ASS_FONT_SIZES = {CaptionFontSize.SMALL: 18, CaptionFontSize.MEDIUM: 22, CaptionFontSize.LARGE: 28}
# numpad layout used by ASS
_ASS_ALIGNMENT = {CaptionPosition.TOP: 8, CaptionPosition.CENTER: 5, CaptionPosition.BOTTOM: 2}

_ASS_HEADER = """[Script Info]
Title: Generated Captions
ScriptType: v4.00+
WrapStyle: 0
ScaledBorderAndShadow: yes
YCbCr Matrix: TV.601
PlayResX: 1920
PlayResY: 1080

[V4+ Styles]
Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding
Style: Default,{font},{size},&H00{primary},&H00{primary},&H00{outline},&H80{outline},-1,0,0,0,100,100,0,0,1,2,1,{alignment},50,50,30,1

[Events]
Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text
"""


def format_srt_time(seconds: float) -> str:
    total_ms = int(round(max(0.0, seconds) * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, ms = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def format_ass_time(seconds: float) -> str:
    total_cs = int(round(max(0.0, seconds) * 100))
    hours, rem = divmod(total_cs, 360_000)
    minutes, rem = divmod(rem, 6000)
    secs, cs = divmod(rem, 100)
    return f"{hours}:{minutes:02d}:{secs:02d}.{cs:02d}"


def hex_to_bgr(hex_color: str) -> str:
    clean = hex_color.lstrip('#')
    r, g, b = clean[0:2], clean[2:4], clean[4:6]
    return f"{b}{g}{r}".upper()


def to_srt(segments: List[CaptionSegment]) -> str:
    blocks = []
    for index, segment in enumerate(segments, start=1):
        blocks.append(
            f"{index}\n{format_srt_time(segment.start_time)} --> {format_srt_time(segment.end_time)}\n{segment.text}\n"
        )
    return "\n".join(blocks)


def to_ass(segments: List[CaptionSegment], style: Optional[CaptionStyle] = None) -> str:
    style = style or DEFAULT_CAPTION_STYLES["classic"]
    header = _ASS_HEADER.format(
        font=style.font_family or "Arial",
        size=_ASS_FONT_SIZES[style.font_size],
        primary=hex_to_bgr(style.color),
        outline=hex_to_bgr(style.background_color or "#000000"),
        alignment=_ASS_ALIGNMENT[style.position],
    )
    events = [
        f"Dialogue: 0,{format_ass_time(s.start_time)},{format_ass_time(s.end_time)},Default,,0,0,0,,{s.text}"
        for s in segments
    ]
    return header + "\n".join(events)


def save_caption_file(segments: List[CaptionSegment], path: str,
                      style: Optional[CaptionStyle] = None, fmt: str = "ass") -> Path:
    """Write captions as SRT or ASS so the renderer can burn them in."""
    if fmt not in ("srt", "ass"):
        raise ValueError(f"Unsupported caption format: {fmt}")

    content = to_srt(segments) if fmt == "srt" else to_ass(segments, style)
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(content, encoding='utf-8')

    logger.info(f"Saved {len(segments)} caption segments to {out}")
    return out
