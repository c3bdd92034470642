from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from accessflow.api.routers.approvals import router as approvals_router
from accessflow.api.routers.auth import router as auth_router
from accessflow.api.routers.security import router as security_router
from accessflow.api.routers.workflows import router as workflows_router
from accessflow.core.config import settings
from accessflow.core.errors import AccessFlowError
from accessflow.core.logging import configure_logging

configure_logging()

app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description=(
        "Role/permission resolution, access decisions and configurable multi-step "
        "approval workflows for the HRMS and finance modules."
    ),
)


@app.exception_handler(AccessFlowError)
async def handle_access_flow_error(request: Request, exc: AccessFlowError) -> JSONResponse:
    _ = request
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.get("/")
def health() -> dict[str, str]:
    return {"status": "ok", "service": settings.app_name}


app.include_router(auth_router)
app.include_router(security_router)
app.include_router(workflows_router)
app.include_router(approvals_router)
