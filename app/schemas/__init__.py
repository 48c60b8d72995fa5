# ruff: noqa: F403, F401
"""Schemas package initialization."""

# Import all schemas to ensure they're registered
from .ai import *
from .base import *
from .chat import *
from .retrieval import *

# Rebuild models after all schemas are loaded
ChatConversationDetailResponse.model_rebuild()
ChatCompletionResponse.model_rebuild()
