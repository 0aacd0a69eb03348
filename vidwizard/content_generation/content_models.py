"""Data models for caption generation"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class CaptionFontSize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class CaptionPosition(str, Enum):
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


class WordTimestamp(BaseModel):
    """A transcribed word with its timing in the voiceover"""
    word: str
    start_time: float  # seconds
    end_time: float  # seconds
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class CaptionWord(BaseModel):
    """Word timing carried inside a caption segment"""
    model_config = ConfigDict(frozen=True)

    word: str
    start_time: float
    end_time: float


class CaptionSegment(BaseModel):
    """A time-bounded block of caption text"""
    model_config = ConfigDict(frozen=True)

    text: str
    start_time: float
    end_time: float
    words: Optional[List[CaptionWord]] = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class CaptionStyle(BaseModel):
    """Visual style for burned-in captions"""
    model_config = ConfigDict(frozen=True)

    font_size: CaptionFontSize = CaptionFontSize.MEDIUM
    color: str = "#FFFFFF"
    background_color: Optional[str] = None
    position: CaptionPosition = CaptionPosition.BOTTOM
    font_family: Optional[str] = None
