"""Business logic of the journal, shared by every surface."""

from .chat_service import ChatService
from .embedding_service import EmbeddingGenerator
from .note_service import NoteService
from .quiz_service import QuizService
from .reminisce_service import ReminisceService
from .retrieval_service import SimilarityRetrievalEngine
from .script_service import RecallScriptGenerator

__all__ = [
    "ChatService",
    "EmbeddingGenerator",
    "NoteService",
    "QuizService",
    "RecallScriptGenerator",
    "ReminisceService",
    "SimilarityRetrievalEngine",
]
