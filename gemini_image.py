"""Adapter between the google-genai SDK and the app's image responses.

Two request/response shapes are supported:

- Gemini image models (``generate_content``): the prompt and an optional
  input image are sent as content parts, the image comes back as an
  ``inline_data`` part of the first candidate.
- Imagen models (``generate_images``): text-to-image only, the image comes
  back as a ``generated_images`` record carrying raw bytes.

Both are normalized to a ``GeneratedImage`` which renders as a data URL.
"""
import logging
import os
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from google import genai
from google.genai import types

from image_data import DEFAULT_MIME_TYPE, decode_payload, parse_data_url, to_data_url

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-image-preview"
API_VERSION = "v1alpha"
MAX_CANDIDATES = 4

# Deprecated / non-preview names mapped to the preview model
MODEL_ALIASES = {
    "gemini-2.5-flash-image": DEFAULT_MODEL,
    "models/gemini-2.5-flash-image": DEFAULT_MODEL,
}


class ImageGenerationError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class GeneratedImage:
    mime_type: str
    data: bytes

    def to_data_url(self) -> str:
        return to_data_url(self.mime_type, self.data)


@dataclass
class GenerationRequest:
    prompt: str
    input_image: Optional[str] = None
    aspect_ratio: Optional[str] = None
    person_generation: Optional[str] = None
    n: Optional[Union[int, float, str]] = None


# ----------------------------
# Configuration helpers
# ----------------------------
def resolve_model(name: Optional[str] = None) -> str:
    """Model from ``GOOGLE_IMAGE_MODEL`` (or ``name``), with aliases applied."""
    if name is None:
        name = os.getenv("GOOGLE_IMAGE_MODEL") or DEFAULT_MODEL
    name = name.strip() or DEFAULT_MODEL
    return MODEL_ALIASES.get(name, name)


def is_imagen_model(model: str) -> bool:
    return model.split("/")[-1].startswith("imagen")


def candidate_count(n: Any) -> int:
    """Coerce ``n`` to a candidate count in [1, MAX_CANDIDATES]; junk becomes 1."""
    if isinstance(n, bool):
        n = int(n)
    try:
        value = int(float(n))
    except (TypeError, ValueError, OverflowError):
        value = 0
    if not value:
        value = 1
    return max(1, min(MAX_CANDIDATES, value))


def create_client(api_key: str) -> genai.Client:
    return genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(api_version=API_VERSION),
    )


def extract_error_message(err: BaseException) -> str:
    """Best-effort human readable message for an SDK / upstream failure."""
    details = getattr(err, "details", None)
    if isinstance(details, dict):
        inner = details.get("error")
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
    message = getattr(err, "message", None)
    if message:
        return str(message)
    return str(err) or "Image generation failed"


# ----------------------------
# Gemini shape
# ----------------------------
def build_contents(prompt: str, input_image: Optional[str]) -> List[Any]:
    contents: List[Any] = []
    parsed = parse_data_url(input_image)
    if parsed is not None:
        mime_type, payload = parsed
        contents.append(types.Part.from_bytes(data=decode_payload(payload), mime_type=mime_type))
    elif input_image:
        logger.warning("Ignoring input_image that is not a base64 data URL")
    contents.append(types.Part.from_text(text=prompt))
    return contents


def extract_inline_image(response) -> GeneratedImage:
    candidates = getattr(response, "candidates", None) or []
    content = getattr(candidates[0], "content", None) if candidates else None
    for part in (getattr(content, "parts", None) or []):
        blob = getattr(part, "inline_data", None)
        if blob is None:
            continue
        mime_type = getattr(blob, "mime_type", None) or ""
        data = getattr(blob, "data", None)
        if mime_type.startswith("image/") and data:
            if isinstance(data, str):
                data = decode_payload(data)
            return GeneratedImage(mime_type=mime_type, data=data)

    text = getattr(response, "text", None)
    raise ImageGenerationError(text if isinstance(text, str) and text else "No image returned by Gemini")


async def generate_with_gemini(client, model: str, req: GenerationRequest) -> GeneratedImage:
    config_kwargs = {"response_modalities": ["IMAGE"]}
    if req.n:
        config_kwargs["candidate_count"] = candidate_count(req.n)

    response = await client.aio.models.generate_content(
        model=model,
        contents=build_contents(req.prompt, req.input_image),
        config=types.GenerateContentConfig(**config_kwargs),
    )
    return extract_inline_image(response)


# ----------------------------
# Imagen shape
# ----------------------------
def extract_generated_image(response) -> GeneratedImage:
    filtered_reason = None
    for generated in (getattr(response, "generated_images", None) or []):
        image = getattr(generated, "image", None)
        data = getattr(image, "image_bytes", None)
        if data:
            return GeneratedImage(mime_type=getattr(image, "mime_type", None) or DEFAULT_MIME_TYPE, data=data)
        filtered_reason = filtered_reason or getattr(generated, "rai_filtered_reason", None)
    raise ImageGenerationError(filtered_reason or "No image returned by Imagen")


async def generate_with_imagen(client, model: str, req: GenerationRequest) -> GeneratedImage:
    if req.input_image:
        logger.info(f"Model {model} is text-to-image only, ignoring input_image")

    config_kwargs = {}
    if req.n:
        config_kwargs["number_of_images"] = candidate_count(req.n)
    if req.aspect_ratio:
        config_kwargs["aspect_ratio"] = req.aspect_ratio
    if req.person_generation:
        config_kwargs["person_generation"] = req.person_generation

    response = await client.aio.models.generate_images(
        model=model,
        prompt=req.prompt,
        config=types.GenerateImagesConfig(**config_kwargs),
    )
    return extract_generated_image(response)


# ----------------------------
# Entry point
# ----------------------------
async def generate_image(api_key: str, req: GenerationRequest, model: Optional[str] = None) -> GeneratedImage:
    """
    Generate (or edit) an image for ``req`` and return the first result.

    Raises ImageGenerationError for any SDK, transport or empty-response
    failure, with the most specific message available.
    """
    model = resolve_model(model)
    client = create_client(api_key)
    generate = generate_with_imagen if is_imagen_model(model) else generate_with_gemini
    try:
        return await generate(client, model, req)
    except ImageGenerationError:
        raise
    except Exception as e:
        raise ImageGenerationError(extract_error_message(e)) from e
