"""
Image reference resolution for tool arguments.

The model never handles image bytes. It refers to images in one of three
ways, and every image-bearing argument is parsed into an ``ImageRef`` before
a handler runs:

- ``artifact``: an earlier tool call id (``call_7``) or an artifact key
  (``step:2:tool:call_7``, ``uploaded:0``)
- ``uploaded``: the ``UPLOADED_IMAGE`` sentinel, or the argument omitted,
  meaning the image attached to the current user message
- ``literal``: a URL or data URL, passed through unchanged
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from image_agent.config import UPLOADED_IMAGE
from image_agent.errors import ValidationError
from image_agent.models import ToolExecutionContext

RefKind = Literal["literal", "uploaded", "artifact"]

NO_IMAGE_MESSAGE = "No image provided. Please upload an image first."


@dataclass(frozen=True)
class ImageRef:
    kind: RefKind
    value: str | None = None


def artifact_key(step_index: int, call_id: str) -> str:
    return f"step:{step_index}:tool:{call_id}"


def uploaded_key(index: int) -> str:
    return f"uploaded:{index}"


def parse_ref(value: Any, context: ToolExecutionContext) -> ImageRef:
    """Classify a raw argument value. Precedence: artifact, uploaded, literal."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return ImageRef("uploaded")
    if not isinstance(value, str):
        raise ValidationError(f"Image reference must be a string, got {type(value).__name__}")
    text = value.strip()
    if text in context.previous_results or text in context.artifacts:
        return ImageRef("artifact", text)
    if text.upper() == UPLOADED_IMAGE:
        return ImageRef("uploaded")
    return ImageRef("literal", text)


def resolve_ref(ref: ImageRef, context: ToolExecutionContext) -> str:
    """Turn a reference into the URL or data URL the handler receives.

    Raises ValidationError when the reference cannot be resolved.
    """
    if ref.kind == "literal":
        return ref.value or ""

    if ref.kind == "uploaded":
        if not context.uploaded_images:
            raise ValidationError(NO_IMAGE_MESSAGE)
        return context.uploaded_images[0]

    key = ref.value or ""
    artifact = context.artifacts.get(key)
    if artifact is not None:
        return artifact.url

    result = context.previous_results.get(key)
    if result is not None and result.success and isinstance(result.data, dict):
        image_ref = result.data.get("image_ref")
        if image_ref and image_ref in context.artifacts:
            return context.artifacts[image_ref].url
        url = result.data.get("resultUrl")
        if isinstance(url, str) and url:
            return url
    raise ValidationError(f"Reference '{key}' does not point to an image", reference=key)


def resolve_image_value(value: Any, context: ToolExecutionContext) -> Any:
    """Resolve one argument value; lists are resolved element-wise."""
    if isinstance(value, list):
        return [resolve_ref(parse_ref(v, context), context) for v in value]
    return resolve_ref(parse_ref(value, context), context)


def resolve_image_args(
    args: dict[str, Any],
    image_params: tuple[str, ...],
    context: ToolExecutionContext,
    fallback_param: str | None = None,
    array_params: frozenset[str] = frozenset(),
) -> dict[str, Any]:
    """Return a copy of ``args`` with every image parameter resolved.

    Only ``fallback_param`` (the primary image of a tool that requires one)
    falls back to the uploaded image when omitted; other omitted parameters
    stay omitted. For array parameters the fallback is every uploaded image.
    """
    resolved = dict(args)
    for param in image_params:
        value = args.get(param)
        if value is not None and value != "" and value != []:
            resolved[param] = resolve_image_value(value, context)
        elif param == fallback_param:
            if param in array_params:
                if not context.uploaded_images:
                    raise ValidationError(NO_IMAGE_MESSAGE)
                resolved[param] = list(context.uploaded_images)
            else:
                resolved[param] = resolve_ref(ImageRef("uploaded"), context)
    return resolved
