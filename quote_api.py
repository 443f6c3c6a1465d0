# quote_api.py

import logging
import os

import httpx
from fastapi import (
    FastAPI,
    File,
    UploadFile,
    Form,
    Depends,
    HTTPException,
    status,
)
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from quote_marker import DOCX_READ_ERRORS, QuoteConfig, check_docx_bytes, check_text

logger = logging.getLogger(__name__)

app = FastAPI(title="Quote Marker API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ===== Supabase config (from environment variables) =====
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")

# Style used when a request does not name one
QUOTE_MARKER_PREFERRED = os.getenv("QUOTE_MARKER_PREFERRED")

auth_scheme = HTTPBearer(auto_error=False)


class CheckRequest(BaseModel):
    text: str
    preferred: str | None = None
    smart: list[str] | None = None
    straight: list[str] | None = None


async def require_user(
    cred: HTTPAuthorizationCredentials | None = Depends(auth_scheme),
) -> None:
    """Reject the request unless Supabase accepts its bearer token."""
    if cred is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )

    if not SUPABASE_URL or not SUPABASE_ANON_KEY:
        raise HTTPException(
            status_code=500,
            detail="Supabase config missing on server",
        )

    try:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(
                f"{SUPABASE_URL}/auth/v1/user",
                headers={
                    "apikey": SUPABASE_ANON_KEY,
                    "Authorization": f"Bearer {cred.credentials}",
                },
            )
    except httpx.HTTPError as e:
        logger.warning("Supabase auth request failed: %r", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Auth service unavailable",
        )

    if resp.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def build_config(overrides: dict) -> QuoteConfig:
    if overrides.get("preferred") is None:
        overrides = {**overrides, "preferred": QUOTE_MARKER_PREFERRED}
    try:
        return QuoteConfig.from_dict(overrides)
    except ValueError as e:
        raise HTTPException(
            status_code=422,
            detail=str(e),
        )


@app.get("/")
def read_root():
    return {"status": "ok", "message": "Quote marker API is running"}


@app.post("/check", dependencies=[Depends(require_user)])
def check(request: CheckRequest):
    """Check quotes and apostrophes in plain text."""
    config = build_config(
        {
            "preferred": request.preferred,
            "smart": request.smart,
            "straight": request.straight,
        }
    )

    diagnostics = check_text(request.text, config)
    logger.info("Checked %d characters: %d issue(s)", len(request.text), len(diagnostics))

    return {
        "diagnostics": [d.to_dict() for d in diagnostics],
        "count": len(diagnostics),
    }


@app.post("/check-docx", dependencies=[Depends(require_user)])
async def check_docx(
    file: UploadFile = File(...),
    preferred: str | None = Form(None),
):
    """Check quotes and apostrophes in an uploaded .docx file."""
    if not file.filename or not file.filename.lower().endswith(".docx"):
        return JSONResponse(
            status_code=400,
            content={"error": "Please upload a .docx file"},
        )

    config = build_config({"preferred": preferred})
    docx_bytes = await file.read()

    try:
        diagnostics, metadata = check_docx_bytes(docx_bytes, config)
    except DOCX_READ_ERRORS:
        return JSONResponse(
            status_code=400,
            content={"error": "Could not read the uploaded .docx file"},
        )
    logger.info("Quote marker metadata for %s: %s", file.filename, metadata)

    return {
        "file_name": file.filename,
        "diagnostics": [d.to_dict() for d in diagnostics],
        "metadata": metadata,
    }
