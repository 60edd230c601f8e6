"""
Engine — Linking intents to code and detecting drift against them
"""

from .diff import extract_changed_code, parse_hunks
from .linker import IntentLinker
from .detector import DriftDetector, DetectionResult, AnalysisResult, CodeRange

__all__ = [
    "extract_changed_code", "parse_hunks",
    "IntentLinker",
    "DriftDetector", "DetectionResult", "AnalysisResult", "CodeRange",
]
