"""
AWS service integrations for the MindsDB RAG runtime.
"""

from mindsdb_rag.services.agent import AgentChatService
from mindsdb_rag.services.sessions import SessionManager

__all__ = [
    "AgentChatService",
    "SessionManager",
]
