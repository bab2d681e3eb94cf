"""proofmark - grammar and style checking for markup documents via LanguageTool."""

__version__ = "0.3.0"

from .coordinator import CheckPass, check_text, check_tree
from .store import DiagnosticsStore

__all__ = ["CheckPass", "DiagnosticsStore", "__version__", "check_text", "check_tree"]
