import asyncio
import base64
import json
import time
from unittest.mock import AsyncMock, Mock

import pytest

from aura_runner.schemas.envelope import ApiEnvelope


def exam_payload(**overrides) -> dict:
    payload = {
        "id": "sess-1",
        "simulationId": "sim-1",
        "title": "TCF blanc n°1",
        "duration": 30,
        "timeRemaining": 1800,
        "currentSection": 0,
        "currentQuestion": 0,
        "answers": {},
        "autoSave": True,
        "sections": [
            {
                "name": "comprehension_orale",
                "duration": 10,
                "questions": [
                    {"id": "co-1", "type": "MCQ", "questionText": "Où est Paul ?", "options": ["A", "B", "C", "D"]},
                    {"id": "co-2", "type": "MCQ", "questionText": "Que fait Marie ?", "options": ["A", "B", "C", "D"]},
                ],
            },
            {
                "name": "comprehension_ecrite",
                "duration": 10,
                "questions": [
                    {"id": "ce-1", "type": "TRUE_FALSE", "questionText": "Le train part à 8h.", "correctAnswer": "true"},
                    {"id": "ce-2", "type": "FILL_IN", "questionText": "Complétez la phrase."},
                ],
            },
            {
                "name": "expression_ecrite",
                "duration": 10,
                "questions": [
                    {"id": "ee-1", "type": "ESSAY", "questionText": "Décrivez votre ville."},
                ],
            },
        ],
    }
    payload.update(overrides)
    return payload


def make_jwt(exp: float) -> str:
    def part(data: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")

    return f"{part({'alg': 'HS256', 'typ': 'JWT'})}.{part({'sub': 'user-1', 'exp': int(exp)})}.signature"


def login_data(role: str = "STUDENT", lifetime: float = 900) -> dict:
    return {
        "user": {
            "id": "user-1",
            "email": "candidate@example.com",
            "firstName": "Amina",
            "lastName": "Diallo",
            "role": role,
            "status": "ACTIVE",
        },
        "tokens": {
            "accessToken": make_jwt(time.time() + lifetime),
            "refreshToken": "refresh-1",
        },
    }


def make_api(payload: dict | None = None) -> AsyncMock:
    """Stand-in for ``ApiClient`` whose calls all succeed by default."""
    api = AsyncMock()
    api.bind_auth = Mock()
    api.start_simulation.return_value = ApiEnvelope(success=True, data=payload or exam_payload())
    api.save_progress.return_value = ApiEnvelope(success=True, data={})
    api.submit_simulation.return_value = ApiEnvelope(success=True, data={"resultId": "res-1"})
    api.login.return_value = ApiEnvelope(success=True, data=login_data())
    api.verify_token.return_value = ApiEnvelope(success=True, data={"user": login_data()["user"]})
    api.logout.return_value = ApiEnvelope(success=True, data=None)
    return api


async def settle(rounds: int = 3) -> None:
    """Let tasks scheduled with ``create_task`` run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def api():
    return make_api()
