"""Segmentation and render orchestration for translating live HTML documents."""

from .config import Rule, SegmentOptions, Setting, load_config
from .controller import RenderController
from .segmenter import TextSegmenter
from .translator import DummyTranslator, SegmentTranslator

__version__ = "0.1.0"

__all__ = [
    "DummyTranslator",
    "RenderController",
    "Rule",
    "SegmentOptions",
    "SegmentTranslator",
    "Setting",
    "TextSegmenter",
    "load_config",
]
