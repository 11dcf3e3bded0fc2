"""Fixtures for grading tests - mock model client."""

from unittest.mock import MagicMock

import pytest


@pytest.fixture
def mock_llm_client() -> MagicMock:
    """Model client returning a quality score of 85."""
    client = MagicMock()
    client.config = MagicMock()
    client.config.provider = "lmstudio"
    client.config.model = "test-model"
    client.is_available.return_value = True
    client.simple_json.return_value = {
        "score": 85,
        "reasoning": "Correct idea, slightly incomplete justification.",
        "suggestions": ["Mention the empty product", "Give an example", "Relate to combinatorics", "Extra"],
    }
    return client
