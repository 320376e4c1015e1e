"""
Session Manager for the DynamoDB session table.

Sessions are keyed by merchant_id (partition) and session_id (sort) and
expire through the table's ttl attribute. The SessionIdIndex and UserIdIndex
global secondary indexes support lookups without the merchant and per-user
listings.
"""

import json
import math
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import uuid4

import boto3
import structlog
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from mindsdb_rag.config import Settings, get_settings
from mindsdb_rag.exceptions import SessionConflictError, SessionError, SessionNotFoundError
from mindsdb_rag.models import (
    ConversationMessage,
    CreateSessionRequest,
    Session,
    SessionContext,
    SessionStats,
    UpdateSessionRequest,
    utcnow,
)
from mindsdb_rag.services.aws import error_code, get_boto_kwargs, transient_retry

logger = structlog.get_logger(__name__)

SESSION_ID_INDEX = "SessionIdIndex"
USER_ID_INDEX = "UserIdIndex"


def _to_dynamo(value: Any) -> Any:
    """Convert a JSON-compatible value into DynamoDB-safe types (floats become Decimal)."""
    return json.loads(json.dumps(value, default=str), parse_float=Decimal)


def _from_dynamo(value: Any) -> Any:
    """Convert DynamoDB Decimals back into ints and floats."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


def _item_to_session(item: dict[str, Any]) -> Session:
    item = _from_dynamo(item)
    ttl = item.get("ttl")
    return Session(
        session_id=item["session_id"],
        merchant_id=item["merchant_id"],
        user_id=item["user_id"],
        conversation_history=item.get("conversation_history") or [],
        context=item.get("context") or SessionContext(),
        created_at=item["created_at"],
        last_activity=item["last_activity"],
        expires_at=int(ttl) if ttl is not None else None,
    )


class SessionManager:
    """
    Manages chat sessions in the DynamoDB session table.

    All public operations wrap DynamoDB failures in SessionError subclasses;
    throttling and other transient errors are retried first.
    """

    def __init__(self, settings: Settings | None = None, table=None):
        """Initialize the Session Manager."""
        self.settings = settings or get_settings()
        self.table_name = self.settings.session.table_name
        self.ttl_hours = self.settings.session.ttl_hours
        self._dynamodb = None
        self._table = table

    @property
    def dynamodb(self):
        """Lazy initialization of DynamoDB resource."""
        if self._dynamodb is None:
            self._dynamodb = boto3.resource("dynamodb", **get_boto_kwargs(self.settings))
        return self._dynamodb

    @property
    def table(self):
        """Get the DynamoDB table."""
        if self._table is None:
            self._table = self.dynamodb.Table(self.table_name)
        return self._table

    def _expiry(self, now: datetime) -> int:
        return int((now + timedelta(hours=self.ttl_hours)).timestamp())

    @transient_retry
    async def _execute(self, operation: str, **kwargs) -> dict[str, Any]:
        return getattr(self.table, operation)(**kwargs)

    async def _query_all(self, **kwargs) -> list[dict[str, Any]]:
        """Run a query, following LastEvaluatedKey until exhausted."""
        items: list[dict[str, Any]] = []
        while True:
            response = await self._execute("query", **kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    async def create_session(self, request: CreateSessionRequest) -> Session:
        """
        Create a new session for a user.

        Args:
            request: Merchant, user and optional initial context

        Returns:
            The created session
        """
        now = utcnow()
        session = Session(
            session_id=str(uuid4()),
            merchant_id=request.merchant_id,
            user_id=request.user_id,
            context=request.context or SessionContext(),
            created_at=now,
            last_activity=now,
            expires_at=self._expiry(now),
        )

        item = {
            "merchant_id": session.merchant_id,
            "session_id": session.session_id,
            "user_id": session.user_id,
            "conversation_history": [],
            "context": _to_dynamo(session.context.model_dump(mode="json")),
            "created_at": now.isoformat(),
            "last_activity": now.isoformat(),
            "ttl": session.expires_at,
        }

        try:
            await self._execute(
                "put_item",
                Item=item,
                ConditionExpression="attribute_not_exists(session_id)",
            )
        except ClientError as e:
            logger.error(
                "Failed to create session",
                merchant_id=request.merchant_id,
                error=str(e),
            )
            if error_code(e) == "ConditionalCheckFailedException":
                raise SessionConflictError("create session", "session already exists") from e
            raise SessionError("create session", str(e)) from e

        logger.info(
            "Session created",
            session_id=session.session_id,
            merchant_id=session.merchant_id,
        )
        return session

    async def get_session(self, session_id: str, merchant_id: str) -> Session | None:
        """Retrieve a session by session ID and merchant ID."""
        try:
            response = await self._execute(
                "get_item",
                Key={"merchant_id": merchant_id, "session_id": session_id},
            )
        except ClientError as e:
            logger.error("Failed to get session", session_id=session_id, error=str(e))
            raise SessionError("get session", str(e)) from e

        item = response.get("Item")
        if not item:
            return None
        return _item_to_session(item)

    async def find_session(self, session_id: str) -> Session | None:
        """Look up a session by ID alone through the SessionIdIndex."""
        try:
            response = await self._execute(
                "query",
                IndexName=SESSION_ID_INDEX,
                KeyConditionExpression=Key("session_id").eq(session_id),
                Limit=1,
            )
        except ClientError as e:
            logger.error("Failed to find session", session_id=session_id, error=str(e))
            raise SessionError("find session", str(e)) from e

        items = response.get("Items", [])
        return _item_to_session(items[0]) if items else None

    async def update_session(self, request: UpdateSessionRequest) -> None:
        """
        Update a session with a new message and/or context fields.

        Refreshes last_activity and pushes the ttl forward. Context fields are
        merged key by key into the stored context.
        """
        now = utcnow()

        update_expression = "SET last_activity = :last_activity, #ttl = :ttl"
        names: dict[str, str] = {"#ttl": "ttl"}
        values: dict[str, Any] = {
            ":last_activity": now.isoformat(),
            ":ttl": self._expiry(now),
        }

        if request.message:
            update_expression += (
                ", conversation_history = list_append("
                "if_not_exists(conversation_history, :empty_list), :message)"
            )
            values[":message"] = [_to_dynamo(request.message.model_dump(mode="json"))]
            values[":empty_list"] = []

        context_fields = (
            request.context.model_dump(exclude_unset=True, exclude_none=True, mode="json")
            if request.context
            else {}
        )
        if context_fields:
            names["#context"] = "context"
            for index, (key, value) in enumerate(context_fields.items()):
                update_expression += f", #context.#ctx{index} = :ctx{index}"
                names[f"#ctx{index}"] = key
                values[f":ctx{index}"] = _to_dynamo(value)

        try:
            await self._execute(
                "update_item",
                Key={"merchant_id": request.merchant_id, "session_id": request.session_id},
                UpdateExpression=update_expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression="attribute_exists(session_id)",
            )
        except ClientError as e:
            logger.error("Failed to update session", session_id=request.session_id, error=str(e))
            if error_code(e) == "ConditionalCheckFailedException":
                raise SessionNotFoundError(
                    "update session", f"session {request.session_id} not found"
                ) from e
            raise SessionError("update session", str(e)) from e

    async def append_message(
        self,
        session_id: str,
        merchant_id: str,
        message: ConversationMessage,
    ) -> None:
        await self.update_session(
            UpdateSessionRequest(session_id=session_id, merchant_id=merchant_id, message=message)
        )

    async def delete_session(self, session_id: str, merchant_id: str) -> None:
        """Delete a session."""
        try:
            await self._execute(
                "delete_item",
                Key={"merchant_id": merchant_id, "session_id": session_id},
            )
        except ClientError as e:
            logger.error("Failed to delete session", session_id=session_id, error=str(e))
            raise SessionError("delete session", str(e)) from e

        logger.info("Session deleted", session_id=session_id, merchant_id=merchant_id)

    async def get_user_sessions(self, user_id: str, limit: int = 10) -> list[Session]:
        """Get a user's sessions, most recent first."""
        try:
            response = await self._execute(
                "query",
                IndexName=USER_ID_INDEX,
                KeyConditionExpression=Key("user_id").eq(user_id),
                ScanIndexForward=False,
                Limit=limit,
            )
        except ClientError as e:
            logger.error("Failed to get user sessions", user_id=user_id, error=str(e))
            raise SessionError("get user sessions", str(e)) from e

        return [_item_to_session(item) for item in response.get("Items", [])]

    async def cleanup_expired_sessions(self, merchant_id: str) -> int:
        """
        Delete a merchant's expired sessions.

        DynamoDB TTL removes expired items eventually; this forces the cleanup
        for maintenance runs.

        Returns:
            Number of sessions deleted
        """
        now = int(time.time())

        try:
            items = await self._query_all(
                KeyConditionExpression=Key("merchant_id").eq(merchant_id),
                FilterExpression=Attr("ttl").lt(now),
            )
        except ClientError as e:
            logger.error("Failed to query expired sessions", merchant_id=merchant_id, error=str(e))
            raise SessionError("cleanup expired sessions", str(e)) from e

        for item in items:
            await self.delete_session(item["session_id"], merchant_id)

        logger.info("Expired sessions cleaned up", merchant_id=merchant_id, count=len(items))
        return len(items)

    async def get_session_stats(self, merchant_id: str) -> SessionStats:
        """Get session counts and average duration for a merchant."""
        try:
            items = await self._query_all(
                KeyConditionExpression=Key("merchant_id").eq(merchant_id),
            )
        except ClientError as e:
            logger.error("Failed to get session stats", merchant_id=merchant_id, error=str(e))
            raise SessionError("get session stats", str(e)) from e

        if not items:
            return SessionStats()

        now = time.time()
        sessions = [_item_to_session(item) for item in items]
        active = [s for s in sessions if s.expires_at is not None and s.expires_at > now]
        avg_minutes = sum(s.duration_minutes for s in sessions) / len(sessions)

        return SessionStats(
            total_sessions=len(sessions),
            active_sessions=len(active),
            # Halves round up
            avg_session_duration=math.floor(avg_minutes + 0.5),
        )
