"""
MindsDB RAG - runtime client for the MindsDB RAG Bedrock Agent.

Manages shopper sessions in the DynamoDB session table and chats with the
Bedrock Agent provisioned by the CDK app under infrastructure/.
"""

__version__ = "0.1.0"

from mindsdb_rag.config import Settings
from mindsdb_rag.services import AgentChatService, SessionManager

__all__ = ["Settings", "AgentChatService", "SessionManager", "__version__"]
