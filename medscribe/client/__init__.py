"""Workstation client: session, training configuration and scribe workspace."""

from medscribe.client.api import ApiClient
from medscribe.client.profile import ProfileStore
from medscribe.client.session import Session, SessionManager
from medscribe.client.speech import SpeechTokenCache
from medscribe.client.training import BaselineNote, TrainingConfigStore, TrainingConfiguration
from medscribe.client.workspace import ScribeWorkspace

__all__ = [
    "ApiClient",
    "ProfileStore",
    "Session",
    "SessionManager",
    "SpeechTokenCache",
    "BaselineNote",
    "TrainingConfigStore",
    "TrainingConfiguration",
    "ScribeWorkspace",
]
