from fastapi import APIRouter

from aura_runner.api.v1.endpoints.auth import router as auth_router
from aura_runner.api.v1.endpoints.runner import router as runner_router
from aura_runner.api.v1.endpoints.state import router as state_router


router = APIRouter()
router.include_router(auth_router)
router.include_router(runner_router)
router.include_router(state_router)
