from portal.common.logging import default_service_name, init_structured_logging, install_fastapi_request_id_middleware

init_structured_logging(service=default_service_name())

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portal.common.logging import log_event

from .routers import proof_packs, qa, revenue

logger = logging.getLogger(__name__)

app = FastAPI(title="Proof Portal Service")
install_fastapi_request_id_middleware(app, service=default_service_name())

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(proof_packs.router)
app.include_router(qa.router)
app.include_router(revenue.router)


@app.exception_handler(RequestValidationError)
async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Invalid request bodies are client errors (400), not 422.
    log_event(logger, "http.invalid_request", severity="INFO", path=str(request.url.path), errors=len(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.get("/healthz")
async def healthz() -> dict[str, Any]:
    return {"status": "ok", "service": default_service_name()}


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 8080)))
