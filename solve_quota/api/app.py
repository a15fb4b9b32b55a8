"""
HTTP boundary for the quota subsystem.

Exposes the check-usage endpoint the UI calls before and after a metered
action. Run with ``uvicorn --factory solve_quota.api.app:create_app``.
"""

import logging
import os
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from solve_quota.config.loader import default_quota_config, load_quota_config
from solve_quota.core.errors import DependencyUnavailable, InputError
from solve_quota.core.identity import Identity
from solve_quota.core.ledger import DEFAULT_FEATURE
from solve_quota.factory import QuotaService, create_quota_service

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SOLVE_QUOTA_CONFIG"
ACTIONS = ("check", "use")


class CheckUsageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId", max_length=200)
    device_id: Optional[str] = Field(None, alias="deviceId", max_length=200)
    action: str = Field("check", description="'check' or 'use'")
    feature: str = Field(DEFAULT_FEATURE, max_length=40, description="e.g. 'solve', 'quiz'")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(service: Optional[QuotaService] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        service: Wired quota service. When omitted, configuration is read
            from the file named by SOLVE_QUOTA_CONFIG, or the reference
            defaults if it is unset.
    """
    if service is None:
        config_path = os.getenv(CONFIG_ENV_VAR, "").strip()
        config = load_quota_config(config_path) if config_path else default_quota_config()
        service = create_quota_service(config)

    app = FastAPI(title="Solve Quota API", version="1.0")
    app.state.quota_service = service

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        field = ".".join(str(p) for p in errors[0].get("loc", ())[1:]) if errors else ""
        logger.info(f"Rejected malformed request to {request.url.path}: {errors}")
        return _error(400, f"Invalid request field '{field}'." if field else "Invalid request body.")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True}

    @app.post("/check-usage")
    def check_usage(req: CheckUsageRequest) -> JSONResponse:
        action = (req.action or "").strip().lower()
        logger.info(
            f"check-usage action={action} userId={req.user_id or 'none'} "
            f"deviceId={req.device_id or 'none'} feature={req.feature}"
        )

        if action not in ACTIONS:
            return _error(400, "Invalid action. Use 'check' or 'use'.")

        try:
            identity = Identity.from_request(req.user_id, req.device_id)
            if action == "check":
                snapshot = service.ledger.check(identity, req.feature)
                return JSONResponse(status_code=200, content=snapshot.to_dict())

            result = service.ledger.use(identity, req.feature)
            return JSONResponse(status_code=200 if result.success else 429, content=result.to_dict())
        except InputError as e:
            return _error(400, str(e))
        except DependencyUnavailable as e:
            logger.error(f"check-usage failed, {e.store} unavailable: {e}")
            return _error(503, "Usage service temporarily unavailable. Please retry.")

    return app
