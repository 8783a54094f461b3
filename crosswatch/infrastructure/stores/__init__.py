"""Persistent stores."""

from .training_data_store import TrainingDataStore

__all__ = ["TrainingDataStore"]
