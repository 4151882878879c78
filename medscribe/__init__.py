"""MedScribe: dictation-to-clinical-note service and workstation client."""

__version__ = "1.0.0"
