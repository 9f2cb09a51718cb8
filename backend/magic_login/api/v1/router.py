"""API v1 router aggregator.

All v1 endpoint routers are included here.
"""

from fastapi import APIRouter

from magic_login.api.v1 import magic_login

router = APIRouter()

router.include_router(magic_login.router, prefix="/magic-login", tags=["magic-login"])
