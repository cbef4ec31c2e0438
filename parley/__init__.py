"""
parley — conversation session engine for streamed LLM chat.

Validates user text, keeps one call in flight per session, streams the
provider's reply, classifies failures, retries with backoff and keeps a
size-bounded history.
"""

from parley.backends import BaseBackend, GeminiBackend, OpenAICompatibleBackend, create_backend
from parley.config import GenerationConfig, SessionConfig
from parley.conversation import BlobPart, ConversationStore, Message, Role, TextPart
from parley.errors import ErrorClassifier, ErrorKind, SessionError
from parley.session import SessionController, SessionState

__version__ = "0.1.0"

__all__ = [
    "BaseBackend",
    "BlobPart",
    "ConversationStore",
    "ErrorClassifier",
    "ErrorKind",
    "GeminiBackend",
    "GenerationConfig",
    "Message",
    "OpenAICompatibleBackend",
    "Role",
    "SessionConfig",
    "SessionController",
    "SessionError",
    "SessionState",
    "TextPart",
    "create_backend",
]
