from fastapi import APIRouter

from issuelink.api.routes.access_tokens import router as access_tokens_router
from issuelink.api.routes.auth import router as auth_router
from issuelink.api.routes.connections import router as connections_router
from issuelink.api.routes.health import router as health_router
from issuelink.api.routes.session import router as session_router
from issuelink.api.routes.webhooks import router as webhooks_router

router = APIRouter()

router.include_router(health_router)
router.include_router(auth_router)
router.include_router(access_tokens_router)
router.include_router(session_router)
router.include_router(webhooks_router)
router.include_router(connections_router)
