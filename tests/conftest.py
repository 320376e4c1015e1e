"""
Pytest configuration and fixtures for MindsDB RAG tests.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables
os.environ["ENVIRONMENT"] = "dev"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["SESSION_TABLE_NAME"] = "test-sessions"
os.environ.pop("BEDROCK_AGENT_ID", None)


@pytest.fixture
def settings():
    """Create test settings."""
    from mindsdb_rag.config import Settings
    return Settings()


@pytest.fixture
def agent_settings():
    """Settings with a configured Bedrock agent."""
    from mindsdb_rag.config import AgentSettings, Settings
    return Settings(agent=AgentSettings(agent_id="AGENT123", agent_alias_id="ALIAS1"))


@pytest.fixture
def mock_session_table():
    """Create a mock DynamoDB session table."""
    table = MagicMock()
    table.put_item = MagicMock(return_value={})
    table.get_item = MagicMock(return_value={})
    table.update_item = MagicMock(return_value={})
    table.delete_item = MagicMock(return_value={})
    table.query = MagicMock(return_value={"Items": []})
    return table


@pytest.fixture
def session_manager(settings, mock_session_table):
    """Create a SessionManager backed by the mock table."""
    from mindsdb_rag.services.sessions import SessionManager
    return SessionManager(settings=settings, table=mock_session_table)


@pytest.fixture
def session_item():
    """A stored session item as DynamoDB returns it."""
    created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return {
        "merchant_id": "merchant-1",
        "session_id": "session-1",
        "user_id": "user-1",
        "conversation_history": [
            {
                "id": "m1",
                "role": "user",
                "content": "Do you have running shoes?",
                "timestamp": created.isoformat(),
                "metadata": {},
            }
        ],
        "context": {
            "preferences": {"size": "42"},
            "purchase_history": [],
            "current_cart": [],
            "demographics": {},
        },
        "created_at": created.isoformat(),
        "last_activity": (created + timedelta(minutes=10)).isoformat(),
        "ttl": 1714651200,
    }


@pytest.fixture
def mock_session_manager():
    """A SessionManager double with async operations."""
    manager = MagicMock()
    manager.get_session = AsyncMock(return_value=None)
    manager.create_session = AsyncMock()
    manager.append_message = AsyncMock()
    return manager


@pytest.fixture
def mock_agent_client():
    """Create a mock Bedrock Agent Runtime client."""
    client = MagicMock()
    client.invoke_agent = MagicMock(return_value={
        "completion": [
            {"chunk": {"bytes": b"We have three "}},
            {"trace": {"orchestrationTrace": {}}},
            {"chunk": {"bytes": b"running shoes in stock."}},
        ]
    })
    return client
