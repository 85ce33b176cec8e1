from fastapi import APIRouter, Depends

from voter_portal.middlewares.rate_limit import general_rate_limit

from voter_portal.routers.admin import admin_router
from voter_portal.routers.auth import auth_router
from voter_portal.routers.files import files_router
from voter_portal.routers.health import health_router
from voter_portal.routers.submissions import submissions_router
from voter_portal.routers.submit_form import submit_form_router
from voter_portal.routers.team import team_router, team_signup_router
from voter_portal.routers.users import users_router

api_router = APIRouter(dependencies=[Depends(general_rate_limit)])

api_router.include_router(auth_router, prefix="/auth", tags=["Auth"])
api_router.include_router(submit_form_router, prefix="/submit-form", tags=["Submit Form"])
api_router.include_router(submissions_router, prefix="/submissions", tags=["Submissions"])
api_router.include_router(users_router, prefix="/users", tags=["Users"])
api_router.include_router(team_signup_router, prefix="/team-signup", tags=["Team"])
api_router.include_router(team_router, prefix="/team", tags=["Team"])
api_router.include_router(admin_router, prefix="/admin", tags=["Admin"])
api_router.include_router(files_router, prefix="/files", tags=["Files"])
api_router.include_router(health_router, prefix="/health", tags=["Health"])
