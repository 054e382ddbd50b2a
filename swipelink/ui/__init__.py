"""UI components for swipelink."""

from .main_window import MainWindow
from .transcript_view import MessageBubble, TranscriptView

__all__ = [
    "MainWindow",
    "MessageBubble",
    "TranscriptView",
]
