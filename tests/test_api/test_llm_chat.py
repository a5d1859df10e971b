"""Tests for the text chat endpoint."""

from __future__ import annotations

from fastapi.testclient import TestClient

from callrelay.config import DEFAULT_CHAT_PROMPT
from callrelay.core.orchestrator import CallOrchestrator
from callrelay.core.registry import SessionRegistry
from callrelay.exceptions import GenerationError
from callrelay.main import create_app
from callrelay.services.llm.protocol import Role


class TestChatEndpoint:
    """Tests for POST /llm/chat."""

    def test_returns_reply(self, test_client, generator) -> None:
        response = test_client.post("/llm/chat", json={"message": "Do you have parking?"})

        assert response.status_code == 200
        assert response.json() == {"reply": "We have rooms available tonight."}

        messages = generator.calls[0]
        assert [m.role for m in messages] == [Role.SYSTEM, Role.USER]
        assert messages[0].content == DEFAULT_CHAT_PROMPT
        assert messages[1].content == "Do you have parking?"

    def test_empty_message_is_rejected(self, test_client, generator) -> None:
        response = test_client.post("/llm/chat", json={"message": ""})

        assert response.status_code == 422
        assert generator.calls == []

    def test_missing_message_is_rejected(self, test_client) -> None:
        response = test_client.post("/llm/chat", json={})
        assert response.status_code == 422

    def test_generation_failure_returns_502(
        self, settings, fakes, transcription, synthesizer
    ) -> None:
        orchestrator = CallOrchestrator(
            SessionRegistry(),
            transcription=transcription,
            generator=fakes.Generator(error=GenerationError("rate limited")),
            synthesizer=synthesizer,
            settings=settings,
        )

        with TestClient(create_app(orchestrator)) as client:
            response = client.post("/llm/chat", json={"message": "hello"})

        assert response.status_code == 502
        assert response.json() == {"detail": "Reply generation failed"}
