"""Nano Banana (Gemini) image generation pipe for Open WebUI."""

from .attachments import BinaryAttachment, WorkItem
from .config import Valves
from .nano_banana_pipe import Pipe
from .node import NanoBananaNode

__all__ = ["BinaryAttachment", "NanoBananaNode", "Pipe", "Valves", "WorkItem"]
