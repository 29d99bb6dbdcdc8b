"""incr: priority-driven incremental reading and flashcard scheduler."""

__version__ = "0.1.0"

from incr.models import FLASHCARD, INCREMENTAL, NodeState, Repetition, Resolution
from incr.config import Config
from incr.app import App

__all__ = ["App", "Config", "FLASHCARD", "INCREMENTAL", "NodeState", "Repetition", "Resolution"]
