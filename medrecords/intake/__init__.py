from .detector import detect_format
from .factory import get_adapter
from .medication import parse_medication
from .types import DetectedFormat, FormatKind, ImportSource, ParsedExport, PatientContext

__all__ = [
    "DetectedFormat",
    "FormatKind",
    "ImportSource",
    "ParsedExport",
    "PatientContext",
    "detect_format",
    "get_adapter",
    "parse_medication",
]
