"""
Tests for the DynamoDB Session Manager.
"""

import time
from datetime import timedelta
from decimal import Decimal

import pytest
from botocore.exceptions import ClientError
from pydantic import ValidationError
from tenacity import wait_none

from mindsdb_rag.exceptions import SessionConflictError, SessionError, SessionNotFoundError
from mindsdb_rag.models import (
    ConversationMessage,
    CreateSessionRequest,
    SessionContext,
    UpdateSessionRequest,
    utcnow,
)
from mindsdb_rag.services.sessions import SessionManager


def client_error(code: str, operation: str = "PutItem") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestCreateSession:
    """Tests for session creation."""

    @pytest.mark.asyncio
    async def test_create_session(self, session_manager, mock_session_table):
        """Test that a new session is written with a ttl and conditional put."""
        before = int(time.time())

        session = await session_manager.create_session(
            CreateSessionRequest(
                merchant_id="merchant-1",
                user_id="user-1",
                context=SessionContext(preferences={"budget": 99.5}),
            )
        )

        kwargs = mock_session_table.put_item.call_args.kwargs
        item = kwargs["Item"]
        assert kwargs["ConditionExpression"] == "attribute_not_exists(session_id)"
        assert item["merchant_id"] == "merchant-1"
        assert item["session_id"] == session.session_id
        assert item["conversation_history"] == []
        assert item["context"]["preferences"]["budget"] == Decimal("99.5")
        assert item["ttl"] >= before + 24 * 3600
        assert session.expires_at == item["ttl"]

    @pytest.mark.asyncio
    async def test_create_session_conflict(self, session_manager, mock_session_table):
        mock_session_table.put_item.side_effect = client_error("ConditionalCheckFailedException")

        with pytest.raises(SessionConflictError):
            await session_manager.create_session(
                CreateSessionRequest(merchant_id="merchant-1", user_id="user-1")
            )

    @pytest.mark.asyncio
    async def test_create_session_error(self, session_manager, mock_session_table):
        """Test that non-transient errors are wrapped without retrying."""
        mock_session_table.put_item.side_effect = client_error("ValidationException")

        with pytest.raises(SessionError) as exc_info:
            await session_manager.create_session(
                CreateSessionRequest(merchant_id="merchant-1", user_id="user-1")
            )

        assert exc_info.value.operation == "create session"
        assert mock_session_table.put_item.call_count == 1


class TestReadSessions:
    """Tests for session lookups."""

    @pytest.mark.asyncio
    async def test_get_session(self, session_manager, mock_session_table, session_item):
        mock_session_table.get_item.return_value = {"Item": session_item}

        session = await session_manager.get_session("session-1", "merchant-1")

        mock_session_table.get_item.assert_called_once_with(
            Key={"merchant_id": "merchant-1", "session_id": "session-1"}
        )
        assert session.user_id == "user-1"
        assert session.conversation_history[0].content == "Do you have running shoes?"
        assert session.context.preferences == {"size": "42"}
        assert session.expires_at == 1714651200

    @pytest.mark.asyncio
    async def test_get_session_restores_numbers(
        self, session_manager, mock_session_table, session_item
    ):
        """Test that DynamoDB Decimals come back as ints and floats."""
        session_item["context"]["preferences"] = {"budget": Decimal("99.5")}
        session_item["context"]["current_cart"] = [{"sku": "A", "quantity": Decimal("2")}]
        session_item["ttl"] = Decimal("1714651200")
        mock_session_table.get_item.return_value = {"Item": session_item}

        session = await session_manager.get_session("session-1", "merchant-1")
        context = session.context.model_dump(mode="json")

        assert context["preferences"]["budget"] == 99.5
        assert isinstance(context["preferences"]["budget"], float)
        assert context["current_cart"][0]["quantity"] == 2
        assert isinstance(context["current_cart"][0]["quantity"], int)
        assert session.expires_at == 1714651200

    @pytest.mark.asyncio
    async def test_get_session_missing(self, session_manager, mock_session_table):
        assert await session_manager.get_session("nope", "merchant-1") is None

    @pytest.mark.asyncio
    async def test_find_session(self, session_manager, mock_session_table, session_item):
        """Test lookup by session ID through the SessionIdIndex."""
        mock_session_table.query.return_value = {"Items": [session_item]}

        session = await session_manager.find_session("session-1")

        kwargs = mock_session_table.query.call_args.kwargs
        assert kwargs["IndexName"] == "SessionIdIndex"
        assert kwargs["Limit"] == 1
        assert session.merchant_id == "merchant-1"

    @pytest.mark.asyncio
    async def test_get_user_sessions(self, session_manager, mock_session_table, session_item):
        mock_session_table.query.return_value = {"Items": [session_item, session_item]}

        sessions = await session_manager.get_user_sessions("user-1", limit=2)

        kwargs = mock_session_table.query.call_args.kwargs
        assert kwargs["IndexName"] == "UserIdIndex"
        assert kwargs["ScanIndexForward"] is False
        assert kwargs["Limit"] == 2
        assert len(sessions) == 2


class TestUpdateSession:
    """Tests for session updates."""

    @pytest.mark.asyncio
    async def test_append_message(self, session_manager, mock_session_table):
        message = ConversationMessage(role="user", content="Show me sneakers")

        await session_manager.append_message("session-1", "merchant-1", message)

        kwargs = mock_session_table.update_item.call_args.kwargs
        assert "list_append(if_not_exists(conversation_history, :empty_list), :message)" in (
            kwargs["UpdateExpression"]
        )
        assert kwargs["ConditionExpression"] == "attribute_exists(session_id)"
        assert kwargs["ExpressionAttributeNames"]["#ttl"] == "ttl"
        assert kwargs["ExpressionAttributeValues"][":message"][0]["content"] == "Show me sneakers"
        assert kwargs["ExpressionAttributeValues"][":empty_list"] == []

    @pytest.mark.asyncio
    async def test_merge_context(self, session_manager, mock_session_table):
        """Test that context fields are set individually."""
        await session_manager.update_session(
            UpdateSessionRequest(
                session_id="session-1",
                merchant_id="merchant-1",
                context={"current_cart": ["SKU-1"], "preferences": {"color": "red"}},
            )
        )

        kwargs = mock_session_table.update_item.call_args.kwargs
        expression = kwargs["UpdateExpression"]
        names = kwargs["ExpressionAttributeNames"]
        values = kwargs["ExpressionAttributeValues"]

        assert "#context.#ctx0 = :ctx0" in expression
        assert "#context.#ctx1 = :ctx1" in expression
        assert "#ctx2" not in expression
        assert "list_append" not in expression
        assert names["#context"] == "context"
        assert names["#ctx0"] == "preferences"
        assert values[":ctx0"] == {"color": "red"}
        assert names["#ctx1"] == "current_cart"
        assert values[":ctx1"] == ["SKU-1"]

    @pytest.mark.asyncio
    async def test_cleared_context_fields_not_written(self, session_manager, mock_session_table):
        await session_manager.update_session(
            UpdateSessionRequest(
                session_id="session-1",
                merchant_id="merchant-1",
                context={"current_cart": None},
            )
        )

        kwargs = mock_session_table.update_item.call_args.kwargs
        assert "#context" not in kwargs["UpdateExpression"]
        assert "#context" not in kwargs["ExpressionAttributeNames"]

    def test_unknown_context_key_rejected(self, mock_session_table):
        """Test that keys outside the session context never reach the table."""
        with pytest.raises(ValidationError):
            UpdateSessionRequest(
                session_id="session-1",
                merchant_id="merchant-1",
                context={"loyalty_tier": "gold"},
            )

        mock_session_table.update_item.assert_not_called()

    def test_mistyped_context_value_rejected(self):
        with pytest.raises(ValidationError):
            UpdateSessionRequest(
                session_id="session-1",
                merchant_id="merchant-1",
                context={"current_cart": {"sku": "A"}},
            )

    @pytest.mark.asyncio
    async def test_update_missing_session(self, session_manager, mock_session_table):
        mock_session_table.update_item.side_effect = client_error(
            "ConditionalCheckFailedException", "UpdateItem"
        )

        with pytest.raises(SessionNotFoundError):
            await session_manager.append_message(
                "gone", "merchant-1", ConversationMessage(role="user", content="hi")
            )

    @pytest.mark.asyncio
    async def test_transient_errors_retried(self, session_manager, mock_session_table, monkeypatch):
        """Test that throttling is retried before succeeding."""
        monkeypatch.setattr(SessionManager._execute.retry, "wait", wait_none())
        mock_session_table.update_item.side_effect = [
            client_error("ProvisionedThroughputExceededException", "UpdateItem"),
            {},
        ]

        await session_manager.append_message(
            "session-1", "merchant-1", ConversationMessage(role="user", content="hi")
        )

        assert mock_session_table.update_item.call_count == 2


class TestMaintenance:
    """Tests for cleanup and statistics."""

    @pytest.mark.asyncio
    async def test_cleanup_expired_sessions(self, session_manager, mock_session_table):
        """Test that every page of expired sessions is deleted."""
        mock_session_table.query.side_effect = [
            {"Items": [{"session_id": "a"}], "LastEvaluatedKey": {"session_id": "a"}},
            {"Items": [{"session_id": "b"}]},
        ]

        deleted = await session_manager.cleanup_expired_sessions("merchant-1")

        assert deleted == 2
        assert mock_session_table.query.call_count == 2
        second_query = mock_session_table.query.call_args_list[1].kwargs
        assert second_query["ExclusiveStartKey"] == {"session_id": "a"}
        mock_session_table.delete_item.assert_any_call(
            Key={"merchant_id": "merchant-1", "session_id": "b"}
        )

    @pytest.mark.asyncio
    async def test_cleanup_nothing_expired(self, session_manager, mock_session_table):
        assert await session_manager.cleanup_expired_sessions("merchant-1") == 0
        mock_session_table.delete_item.assert_not_called()

    @pytest.mark.asyncio
    async def test_session_stats(self, session_manager, mock_session_table):
        now = utcnow()
        items = [
            {
                "merchant_id": "merchant-1",
                "session_id": "active",
                "user_id": "user-1",
                "created_at": (now - timedelta(minutes=10)).isoformat(),
                "last_activity": now.isoformat(),
                "ttl": Decimal(int(time.time()) + 3600),
            },
            {
                "merchant_id": "merchant-1",
                "session_id": "expired",
                "user_id": "user-2",
                "created_at": (now - timedelta(days=2, minutes=20)).isoformat(),
                "last_activity": (now - timedelta(days=2)).isoformat(),
                "ttl": Decimal(int(time.time()) - 3600),
            },
        ]
        mock_session_table.query.return_value = {"Items": items}

        stats = await session_manager.get_session_stats("merchant-1")

        assert stats.total_sessions == 2
        assert stats.active_sessions == 1
        assert stats.avg_session_duration == 15

    @pytest.mark.asyncio
    async def test_session_stats_rounds_half_up(self, session_manager, mock_session_table):
        """Test that an average of 2.5 minutes reports 3."""
        now = utcnow()
        mock_session_table.query.return_value = {
            "Items": [
                {
                    "merchant_id": "merchant-1",
                    "session_id": f"s{minutes}",
                    "user_id": "user-1",
                    "created_at": (now - timedelta(minutes=minutes)).isoformat(),
                    "last_activity": now.isoformat(),
                    "ttl": Decimal(int(time.time()) + 3600),
                }
                for minutes in (2, 3)
            ]
        }

        stats = await session_manager.get_session_stats("merchant-1")

        assert stats.avg_session_duration == 3

    @pytest.mark.asyncio
    async def test_session_stats_empty(self, session_manager):
        stats = await session_manager.get_session_stats("merchant-1")

        assert stats.total_sessions == 0
        assert stats.avg_session_duration == 0
