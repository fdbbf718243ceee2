"""
Document store persistence for observations, predictions and sessions.
"""
from .observation_store import ObservationStore
from .prediction_store import PredictionStore
from .session_store import SessionStore

__all__ = ["ObservationStore", "PredictionStore", "SessionStore"]
