import json
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from fastapi.security import APIKeyHeader

from gemini_image import (
    GenerationRequest,
    ImageGenerationError,
    generate_image,
    resolve_model,
)
from image_data import InvalidImageError, fit_data_url, prepare_image

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Load environment variables from a .env file if present
load_dotenv()

VERSION = "1.0.0"
API_KEY_HEADER = "x-google-api-key"
# Server-side keys, checked in order when the request carries none
API_KEY_ENV_VARS = ("GOOGLE_GENERATIVE_AI_API_KEY", "GOOGLE_API_KEY")
STATIC_DIR = Path(__file__).resolve().parent / "static"

max_body_bytes = int(os.getenv("MAX_BODY_BYTES", str(10 * 1024 * 1024)))
max_image_side = int(os.getenv("MAX_IMAGE_SIDE", "1024"))

app = FastAPI(title="Paint by Text", version=VERSION)

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)

# ----------------------------
# Custom Exceptions
# ----------------------------
class APIError(Exception):
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500):
        self.message = message
        self.code = code
        self.status_code = status_code

class InvalidInputError(APIError):
    def __init__(self, message: str):
        super().__init__(message, "INVALID_INPUT", 400)

class UnauthorizedError(APIError):
    def __init__(self, message: str = "Missing Google API key. Please provide your key in the x-google-api-key header."):
        super().__init__(message, "UNAUTHORIZED", 401)

class MethodNotAllowedError(APIError):
    def __init__(self, message: str = "Method not allowed"):
        super().__init__(message, "METHOD_NOT_ALLOWED", 405)

class PayloadTooLargeError(APIError):
    def __init__(self, message: str = "Request body too large"):
        super().__init__(message, "PAYLOAD_TOO_LARGE", 413)

class GenerationError(APIError):
    def __init__(self, message: str = "Image generation failed"):
        super().__init__(message, "GENERATION_ERROR", 500)


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    content = {"detail": exc.message}
    if exc.status_code >= 500:
        content["error"] = str(exc.message)
    headers = {"Allow": "POST"} if isinstance(exc, MethodNotAllowedError) else None
    return JSONResponse(content, status_code=exc.status_code, headers=headers)

@app.middleware("http")
async def limit_declared_body_size(request: Request, call_next):
    """Reject bodies whose Content-Length exceeds MAX_BODY_BYTES before they are read."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_body_bytes:
        logger.warning(f"Rejected {request.method} {request.url.path}: body of {declared} bytes")
        exc = PayloadTooLargeError()
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)
    return await call_next(request)

# ----------------------------
# Auth: resolve the Google API key
# ----------------------------
def resolve_api_key(header_key: Optional[str] = Depends(api_key_header)) -> str:
    """Key from the request header, else from the server environment."""
    candidates = [header_key] + [os.getenv(name) for name in API_KEY_ENV_VARS]
    for key in candidates:
        if key:
            return key
    logger.warning("Rejected request without a Google API key")
    raise UnauthorizedError()

# ----------------------------
# Request body
# ----------------------------
async def read_json_body(request: Request) -> dict:
    """Parse the JSON body, dropping null values. Non-objects read as empty."""
    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_body_bytes:
            raise PayloadTooLargeError()
        chunks.append(chunk)
    raw = b"".join(chunks)
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise InvalidInputError("Request body must be valid JSON")
    if not isinstance(body, dict):
        return {}
    return {k: v for k, v in body.items() if v is not None}

# ----------------------------
# Health Check Endpoints
# ----------------------------
@app.get("/health")
async def health_check():
    """Basic health check - service is running"""
    return JSONResponse(
        {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "version": VERSION
        }
    )

@app.get("/ready")
async def readiness_check():
    """Readiness check - reports the configured model and whether a server key is set"""
    return JSONResponse(
        {
            "status": "ready",
            "model": resolve_model(),
            "server_key_configured": any(os.getenv(name) for name in API_KEY_ENV_VARS),
            "timestamp": datetime.utcnow().isoformat()
        }
    )

# ----------------------------
# UI
# ----------------------------
@app.get("/", include_in_schema=False)
async def index():
    return FileResponse(STATIC_DIR / "index.html", media_type="text/html")

# ----------------------------
# Image upload preparation
# ----------------------------
@app.post("/api/prepare-image")
async def prepare_upload(image: UploadFile = File(...)):
    """
    Normalize a dropped or picked image before it joins the edit history.

    Applies EXIF orientation and downscales to MAX_IMAGE_SIDE. Returns
    ``{"image": dataUrl}``.
    """
    if image.size is not None and image.size > max_body_bytes:
        raise PayloadTooLargeError()
    raw = await image.read(max_body_bytes + 1)
    if len(raw) > max_body_bytes:
        raise PayloadTooLargeError()
    try:
        data_url = prepare_image(raw, max_image_side)
    except InvalidImageError as e:
        logger.warning(f"Rejected upload {image.filename}: {e}")
        raise InvalidInputError("Invalid image file")
    logger.info(f"Prepared upload {image.filename} ({len(raw)} bytes)")
    return JSONResponse({"image": data_url})

# ----------------------------
# Image generation
# ----------------------------
@app.api_route("/api/generate", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"], include_in_schema=False)
async def generate_method_not_allowed():
    raise MethodNotAllowedError()

@app.post("/api/generate")
async def generate(request: Request, api_key: str = Depends(resolve_api_key)):
    """
    Generate or edit an image from a text instruction.

    Body (JSON):
    - prompt (str, required): the edit instruction
    - input_image (str, optional): data URL of the image to edit
    - aspect_ratio (str, optional): Imagen models only
    - person_generation (str, optional): Imagen models only
    - n (int, optional): candidate count, clamped to 1..4

    The Google API key comes from the x-google-api-key header, falling back
    to GOOGLE_GENERATIVE_AI_API_KEY / GOOGLE_API_KEY.

    Returns ``{"image": dataUrl}``; failures return ``{"detail": ...}``.
    """
    body = await read_json_body(request)

    prompt = body.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise InvalidInputError("Missing required field: prompt")

    input_image = body.get("input_image")
    if isinstance(input_image, str):
        try:
            input_image = fit_data_url(input_image, max_image_side)
        except InvalidImageError as e:
            logger.warning(f"Invalid input image: {e}")
            raise InvalidInputError("Invalid input image")
    else:
        input_image = None

    req = GenerationRequest(
        prompt=prompt,
        input_image=input_image,
        aspect_ratio=body.get("aspect_ratio"),
        person_generation=body.get("person_generation"),
        n=body.get("n"),
    )
    logger.info(
        f"Processing generate request: prompt='{prompt[:50]}', "
        f"input_image={'yes' if input_image else 'no'}, n={req.n}"
    )

    start_time = time.time()
    try:
        image = await generate_image(api_key, req)
    except ImageGenerationError as e:
        logger.error(f"Image generation failed: {e.message}", exc_info=e.__cause__ is not None)
        raise GenerationError(e.message or "Image generation failed")

    logger.info(f"Image generated in {time.time() - start_time:.2f}s ({image.mime_type}, {len(image.data)} bytes)")
    return JSONResponse({"image": image.to_data_url()})
