"""
Agent Chat Service for the deployed Bedrock Agent.

Resolves the shopper's session, invokes the agent with tenant and
conversation context as session attributes, and records both sides of the
exchange in the session table.
"""

import json
import time
from typing import Any

import boto3
import structlog
from botocore.exceptions import ClientError

from mindsdb_rag.config import Settings, get_settings
from mindsdb_rag.exceptions import AgentConfigurationError, AgentInvocationError
from mindsdb_rag.models import (
    ChatRequest,
    ChatResponse,
    ConversationMessage,
    CreateSessionRequest,
    Session,
)
from mindsdb_rag.services.aws import get_boto_kwargs, transient_retry
from mindsdb_rag.services.sessions import SessionManager

logger = structlog.get_logger(__name__)


class AgentChatService:
    """
    Service for chatting with the MindsDB RAG Bedrock Agent.

    Every agent call carries merchant_id so the action group Lambdas can
    enforce tenant isolation.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session_manager: SessionManager | None = None,
    ):
        """Initialize Agent Chat Service."""
        self.settings = settings or get_settings()
        self.sessions = session_manager or SessionManager(settings=self.settings)
        self._agent_client = None

    @property
    def agent_client(self):
        """Lazy initialization of Bedrock Agent Runtime client."""
        if self._agent_client is None:
            self._agent_client = boto3.client(
                "bedrock-agent-runtime", **get_boto_kwargs(self.settings)
            )
        return self._agent_client

    async def _resolve_session(self, request: ChatRequest) -> Session:
        """Get the requested session, or open a new one."""
        if request.session_id:
            session = await self.sessions.get_session(request.session_id, request.merchant_id)
            if session:
                return session
            logger.info(
                "Session not found, starting a new one",
                session_id=request.session_id,
                merchant_id=request.merchant_id,
            )

        return await self.sessions.create_session(
            CreateSessionRequest(
                merchant_id=request.merchant_id,
                user_id=request.user_id,
                context=request.user_context,
            )
        )

    def build_session_attributes(self, request: ChatRequest, session: Session) -> dict[str, str]:
        """Session attributes passed to the agent; values must be strings."""
        window = self.settings.session.history_window
        history = [
            {"role": msg.role, "content": msg.content}
            for msg in session.conversation_history[-window:]
        ]
        return {
            "merchant_id": request.merchant_id,
            "user_id": request.user_id,
            "user_context": json.dumps(session.context.model_dump(mode="json"), default=str),
            "conversation_history": json.dumps(history),
        }

    @transient_retry
    async def _invoke(self, params: dict[str, Any]) -> str:
        response = self.agent_client.invoke_agent(**params)

        chunks = []
        for event in response.get("completion", []):
            if "chunk" in event and "bytes" in event["chunk"]:
                chunks.append(event["chunk"]["bytes"].decode("utf-8"))
            elif "trace" in event:
                logger.debug("Agent trace", trace=event["trace"])

        return "".join(chunks)

    async def invoke_agent(
        self,
        prompt: str,
        session_id: str,
        session_attributes: dict[str, str] | None = None,
    ) -> str:
        """
        Invoke the Bedrock Agent and collect the streamed completion.

        Args:
            prompt: User input
            session_id: Session ID for conversation continuity
            session_attributes: Attributes exposed to the agent's prompts and tools

        Returns:
            The agent's full response text
        """
        agent_id = self.settings.agent.agent_id
        if not agent_id:
            raise AgentConfigurationError("Agent ID not configured (set BEDROCK_AGENT_ID)")

        params: dict[str, Any] = {
            "agentId": agent_id,
            "agentAliasId": self.settings.agent.agent_alias_id,
            "sessionId": session_id,
            "inputText": prompt,
            "enableTrace": self.settings.agent.enable_trace,
        }
        if session_attributes:
            params["sessionState"] = {"sessionAttributes": session_attributes}

        try:
            return await self._invoke(params)
        except ClientError as e:
            logger.error("Agent invocation failed", agent_id=agent_id, error=str(e))
            raise AgentInvocationError(f"Agent invocation failed: {e}") from e

    async def process_chat(self, request: ChatRequest) -> ChatResponse:
        """
        Process a chat turn through the Bedrock Agent.

        Args:
            request: Chat request with query and tenant identifiers

        Returns:
            Agent response with the session ID to continue the conversation
        """
        start_time = time.perf_counter()

        session = await self._resolve_session(request)
        attributes = self.build_session_attributes(request, session)

        answer = await self.invoke_agent(request.query, session.session_id, attributes)
        latency_ms = (time.perf_counter() - start_time) * 1000

        await self.sessions.append_message(
            session.session_id,
            request.merchant_id,
            ConversationMessage(
                role="user",
                content=request.query,
                metadata={"merchant_id": request.merchant_id, "user_id": request.user_id},
            ),
        )
        await self.sessions.append_message(
            session.session_id,
            request.merchant_id,
            ConversationMessage(
                role="assistant",
                content=answer,
                metadata={"latency_ms": round(latency_ms)},
            ),
        )

        logger.info(
            "Chat processed",
            session_id=session.session_id,
            merchant_id=request.merchant_id,
            latency_ms=round(latency_ms, 2),
        )

        return ChatResponse(
            response=answer,
            session_id=session.session_id,
            latency_ms=latency_ms,
        )
