"""
Built-in tool catalog.

28 tools across image editing, generation, analysis, text, translation, file
management, social media and utility categories. Remote tools delegate to a
``ProcessingBackend`` and debit billing on success; ``get_credits`` and
``get_session_history`` are answered from the execution context.
"""

from __future__ import annotations

from typing import Any

from image_agent.errors import INSUFFICIENT_CREDITS
from image_agent.logging import get_logger
from image_agent.models import ToolExecutionContext, ToolExecutionResult
from image_agent.services import BillingService, ProcessingBackend
from image_agent.tools.registry import ArgValidator, RegisteredTool, ToolHandler, ToolRegistry

logger = get_logger("tools.catalog")

_IMAGE_URL = {"type": "string", "description": "URL or base64 of the input image"}

SOCIAL_PLATFORMS = (
    "instagram-post",
    "instagram-story",
    "facebook-post",
    "twitter-post",
    "linkedin-post",
    "youtube-thumbnail",
    "tiktok",
)


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _image_schema(properties: dict[str, Any] | None = None, required: list[str] | None = None) -> dict[str, Any]:
    return _schema({"image_url": _IMAGE_URL, **(properties or {})}, ["image_url", *(required or [])])


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def _in_range(args: dict[str, Any], key: str, low: float, high: float) -> str | None:
    value = args.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return f"{key} must be a number"
    if not low <= value <= high:
        return f"{key} must be between {low:g} and {high:g}"
    return None


def _first_error(*errors: str | None) -> str | None:
    return next((e for e in errors if e), None)


def _validate_resize(args: dict[str, Any]) -> str | None:
    if not args.get("width") and not args.get("height"):
        return "Please specify width and/or height for resizing."
    return _first_error(_in_range(args, "width", 1, 16384), _in_range(args, "height", 1, 16384))


def _validate_crop(args: dict[str, Any]) -> str | None:
    has_box = args.get("width") and args.get("height")
    if not (has_box or args.get("aspect_ratio") or args.get("smart_crop")):
        return "Specify a crop box (width and height), an aspect_ratio, or smart_crop."
    return None


def _validate_rotate(args: dict[str, Any]) -> str | None:
    rotate = args.get("rotate")
    if rotate is not None and rotate not in (0, 90, 180, 270):
        return "rotate must be one of 0, 90, 180, 270"
    if rotate in (None, 0) and not args.get("flip_horizontal") and not args.get("flip_vertical"):
        return "Specify a rotation or a flip."
    return None


def _validate_quality(args: dict[str, Any]) -> str | None:
    return _in_range(args, "quality", 1, 100)


def _validate_watermark(args: dict[str, Any]) -> str | None:
    if not args.get("text") and not args.get("watermark_image_url"):
        return "Provide watermark text or watermark_image_url."
    return _in_range(args, "opacity", 0, 1)


def _validate_colors(args: dict[str, Any]) -> str | None:
    return _first_error(
        _in_range(args, "brightness", -100, 100),
        _in_range(args, "contrast", -100, 100),
        _in_range(args, "saturation", -100, 100),
        _in_range(args, "hue", 0, 360),
        _in_range(args, "gamma", 0.1, 5.0),
    )


def _validate_prompt(args: dict[str, Any]) -> str | None:
    prompt = args.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        return "prompt must be a non-empty string"
    return None


def _validate_variation(args: dict[str, Any]) -> str | None:
    return _first_error(_in_range(args, "variation_strength", 0, 1), _in_range(args, "count", 1, 4))


def _validate_text(args: dict[str, Any]) -> str | None:
    text = args.get("text")
    if not isinstance(text, str) or not text.strip():
        return "text must be a non-empty string"
    return None


def _validate_translate(args: dict[str, Any]) -> str | None:
    return _first_error(
        _validate_text(args),
        None if args.get("target_language") else "target_language is required",
    )


def _validate_zip(args: dict[str, Any]) -> str | None:
    files = args.get("files")
    if not isinstance(files, list) or not files:
        return "files must be a non-empty list"
    return None


def _validate_batch(args: dict[str, Any]) -> str | None:
    if args.get("operation") not in ("resize", "compress", "convert", "remove_background", "watermark"):
        return "operation must be one of resize, compress, convert, remove_background, watermark"
    images = args.get("images")
    if images is not None and (not isinstance(images, list) or len(images) > 20):
        return "images must be a list of at most 20 items"
    return None


def _validate_platforms(args: dict[str, Any]) -> str | None:
    platforms = args.get("platforms")
    if not isinstance(platforms, list) or not platforms:
        return "platforms must be a non-empty list"
    unknown = [p for p in platforms if p not in SOCIAL_PLATFORMS]
    if unknown:
        return f"Unknown platform(s): {', '.join(map(str, unknown))}"
    return None


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def remote_handler(
    operation: str,
    backend: ProcessingBackend,
    billing: BillingService,
    credits: int,
    input_param: str | None = "image_url",
) -> ToolHandler:
    """Handler that runs ``operation`` on the backend and debits on success."""

    async def handler(args: dict[str, Any], context: ToolExecutionContext) -> ToolExecutionResult:
        params = {k: v for k, v in args.items() if k != input_param}
        payload = args.get(input_param) if input_param else None
        data = await backend.process(operation, payload, params)
        if credits and not await billing.debit(context.user_id, credits):
            return ToolExecutionResult.failure(
                "Insufficient credits",
                INSUFFICIENT_CREDITS,
                data={"required": credits},
            )
        return ToolExecutionResult(success=True, data=data, credits_used=credits)

    return handler


async def _get_credits(args: dict[str, Any], context: ToolExecutionContext) -> ToolExecutionResult:
    return ToolExecutionResult(
        success=True,
        data={
            "availableCredits": context.available_credits,
            "message": f"You have {context.available_credits} credits available.",
        },
    )


async def _get_session_history(args: dict[str, Any], context: ToolExecutionContext) -> ToolExecutionResult:
    limit = args.get("limit")
    entries = [
        {
            "callId": call_id,
            "success": result.success,
            "creditsUsed": result.credits_used,
            **({"imageRef": result.data["image_ref"]} if isinstance(result.data, dict) and "image_ref" in result.data else {}),
            **({} if result.success else {"error": result.error}),
        }
        for call_id, result in context.previous_results.items()
    ]
    if isinstance(limit, int) and limit > 0:
        entries = entries[-limit:]
    return ToolExecutionResult(
        success=True,
        data={
            "operations": entries,
            "images": sorted(context.artifacts),
            "totalCreditsUsed": sum(e["creditsUsed"] for e in entries if e["success"]),
        },
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

# name -> (description, category, credits, seconds, requires_image, produces_image, parameters, validator, image_params)
_CATALOG: list[tuple[str, str, str, int, float, bool, bool, dict[str, Any], ArgValidator | None, tuple[str, ...]]] = [
    # Image editing
    (
        "remove_background",
        "Remove background from image, making it transparent. Best for product photos, portraits, and objects.",
        "image_editing", 1, 5, True, True,
        _image_schema({"refine_edges": {"type": "boolean", "description": "Whether to refine edges for better quality (slower)"}}),
        None, (),
    ),
    (
        "upscale_image",
        "Upscale image to higher resolution using AI. Supports 2x and 4x scaling.",
        "image_editing", 2, 15, True, True,
        _image_schema({"scale": {"type": "string", "enum": ["2x", "4x"], "description": "Scale factor for upscaling"}}),
        None, (),
    ),
    (
        "compress_image",
        "Compress image to reduce file size while maintaining quality. Good for web optimization.",
        "image_editing", 0, 3, True, True,
        _image_schema({
            "quality": {"type": "number", "description": "Quality level 1-100 (default: 80)"},
            "max_width": {"type": "number", "description": "Maximum width in pixels (optional)"},
            "max_height": {"type": "number", "description": "Maximum height in pixels (optional)"},
        }),
        _validate_quality, (),
    ),
    (
        "convert_format",
        "Convert image to different format (PNG, JPG, WebP, AVIF).",
        "image_editing", 0, 2, True, True,
        _image_schema({
            "format": {"type": "string", "enum": ["png", "jpg", "webp", "avif"], "description": "Target format"},
            "quality": {"type": "number", "description": "Quality for lossy formats (1-100)"},
        }, ["format"]),
        _validate_quality, (),
    ),
    (
        "resize_image",
        "Resize image to specific dimensions or percentage. Supports aspect ratio preservation.",
        "image_editing", 0, 2, True, True,
        _image_schema({
            "width": {"type": "number", "description": "Target width in pixels"},
            "height": {"type": "number", "description": "Target height in pixels"},
            "maintain_aspect_ratio": {"type": "boolean", "description": "Whether to maintain aspect ratio (default: true)"},
            "fit": {"type": "string", "enum": ["cover", "contain", "fill", "inside", "outside"], "description": "How to fit the image within dimensions"},
        }),
        _validate_resize, (),
    ),
    (
        "crop_image",
        "Crop image to specific region or aspect ratio. Supports smart cropping.",
        "image_editing", 0, 2, True, True,
        _image_schema({
            "x": {"type": "number", "description": "Left position of crop area"},
            "y": {"type": "number", "description": "Top position of crop area"},
            "width": {"type": "number", "description": "Width of crop area"},
            "height": {"type": "number", "description": "Height of crop area"},
            "aspect_ratio": {"type": "string", "description": 'Target aspect ratio (e.g., "16:9", "1:1", "4:3")'},
            "smart_crop": {"type": "boolean", "description": "Use AI to detect best crop area"},
        }),
        _validate_crop, (),
    ),
    (
        "rotate_flip_image",
        "Rotate image by degrees or flip horizontally/vertically.",
        "image_editing", 0, 1, True, True,
        _image_schema({
            "rotate": {"type": "number", "description": "Rotation angle in degrees (0, 90, 180, 270)"},
            "flip_horizontal": {"type": "boolean", "description": "Flip image horizontally"},
            "flip_vertical": {"type": "boolean", "description": "Flip image vertically"},
        }),
        _validate_rotate, (),
    ),
    (
        "add_watermark",
        "Add text or image watermark to image.",
        "image_editing", 0, 2, True, True,
        _image_schema({
            "text": {"type": "string", "description": "Watermark text"},
            "watermark_image_url": {"type": "string", "description": "URL or base64 of watermark image"},
            "position": {
                "type": "string",
                "enum": ["top-left", "top-right", "bottom-left", "bottom-right", "center", "tile"],
                "description": "Watermark position",
            },
            "opacity": {"type": "number", "description": "Watermark opacity 0-1 (default: 0.5)"},
        }),
        _validate_watermark, ("image_url", "watermark_image_url"),
    ),
    (
        "adjust_colors",
        "Adjust image colors: brightness, contrast, saturation, hue.",
        "image_editing", 0, 2, True, True,
        _image_schema({
            "brightness": {"type": "number", "description": "Brightness adjustment -100 to 100"},
            "contrast": {"type": "number", "description": "Contrast adjustment -100 to 100"},
            "saturation": {"type": "number", "description": "Saturation adjustment -100 to 100"},
            "hue": {"type": "number", "description": "Hue rotation 0-360 degrees"},
            "gamma": {"type": "number", "description": "Gamma correction 0.1-5.0"},
        }),
        _validate_colors, (),
    ),
    (
        "apply_filter",
        "Apply artistic or photo filters to image.",
        "image_editing", 0, 3, True, True,
        _image_schema({
            "filter": {
                "type": "string",
                "enum": ["grayscale", "sepia", "vintage", "polaroid", "noir", "blur", "sharpen", "emboss", "vignette"],
                "description": "Filter to apply",
            },
            "intensity": {"type": "number", "description": "Filter intensity 0-100 (default: 100)"},
        }, ["filter"]),
        lambda args: _in_range(args, "intensity", 0, 100), (),
    ),
    # Image generation
    (
        "generate_image",
        "Generate image from text prompt using AI. Supports various styles and aspect ratios.",
        "image_generation", 3, 30, False, True,
        _schema({
            "prompt": {"type": "string", "description": "Text description of the image to generate"},
            "negative_prompt": {"type": "string", "description": "What to avoid in the generated image"},
            "style": {
                "type": "string",
                "enum": ["realistic", "artistic", "anime", "digital-art", "photography", "3d-render"],
                "description": "Style of the generated image",
            },
            "aspect_ratio": {"type": "string", "enum": ["1:1", "16:9", "9:16", "4:3", "3:4"], "description": "Aspect ratio of the generated image"},
            "quality": {"type": "string", "enum": ["draft", "standard", "hd"], "description": "Quality level (affects generation time and credits)"},
        }, ["prompt"]),
        _validate_prompt, (),
    ),
    (
        "edit_image_ai",
        "Edit parts of an image using AI. Select region with mask and describe changes.",
        "image_generation", 2, 20, True, True,
        _image_schema({
            "mask_url": {"type": "string", "description": "URL or base64 of the mask image (white = edit area)"},
            "prompt": {"type": "string", "description": "Description of what to generate in the masked area"},
            "negative_prompt": {"type": "string", "description": "What to avoid in the edited area"},
        }, ["prompt"]),
        _validate_prompt, ("image_url", "mask_url"),
    ),
    (
        "extend_image",
        "Extend image canvas and fill with AI-generated content.",
        "image_generation", 2, 25, True, True,
        _image_schema({
            "direction": {"type": "string", "enum": ["left", "right", "up", "down", "all"], "description": "Direction to extend"},
            "amount": {"type": "number", "description": "Amount to extend in pixels"},
            "prompt": {"type": "string", "description": "Optional prompt to guide generation"},
        }, ["direction"]),
        lambda args: _in_range(args, "amount", 1, 4096), (),
    ),
    (
        "create_variation",
        "Create variations of an existing image while maintaining its core elements.",
        "image_generation", 2, 20, True, True,
        _image_schema({
            "variation_strength": {"type": "number", "description": "How different the variation should be 0-1 (default: 0.5)"},
            "count": {"type": "number", "description": "Number of variations to generate (1-4)"},
        }),
        _validate_variation, (),
    ),
    (
        "image_to_image",
        "Transform image using AI while following a text prompt.",
        "image_generation", 2, 20, True, True,
        _image_schema({
            "prompt": {"type": "string", "description": "How to transform the image"},
            "strength": {"type": "number", "description": "Transformation strength 0-1 (default: 0.7)"},
            "style": {
                "type": "string",
                "enum": ["realistic", "artistic", "anime", "sketch", "oil-painting"],
                "description": "Style to apply",
            },
        }, ["prompt"]),
        lambda args: _first_error(_validate_prompt(args), _in_range(args, "strength", 0, 1)), (),
    ),
    # Image analysis
    (
        "analyze_image",
        "Analyze image content, detect objects, read text (OCR), extract colors.",
        "image_analysis", 1, 5, True, False,
        _image_schema({
            "analysis_type": {
                "type": "string",
                "enum": ["full", "objects", "text", "colors", "faces", "quality"],
                "description": "Type of analysis to perform",
            },
            "language": {"type": "string", "description": 'Language for OCR (e.g., "pl", "en", "de")'},
        }),
        None, (),
    ),
    (
        "extract_text",
        "Extract text from image using OCR. Supports multiple languages.",
        "image_analysis", 1, 5, True, False,
        _image_schema({
            "language": {"type": "string", "description": 'Primary language in the image (e.g., "pl", "en")'},
            "detect_layout": {"type": "boolean", "description": "Whether to preserve text layout"},
        }),
        None, (),
    ),
    (
        "detect_faces",
        "Detect faces in image and optionally analyze expressions, age, gender.",
        "image_analysis", 1, 5, True, False,
        _image_schema({
            "analyze_attributes": {"type": "boolean", "description": "Whether to analyze face attributes (age, gender, emotion)"},
            "return_landmarks": {"type": "boolean", "description": "Whether to return facial landmarks"},
        }),
        None, (),
    ),
    (
        "get_metadata",
        "Extract EXIF and technical metadata from image.",
        "image_analysis", 0, 1, True, False,
        _image_schema({"include_exif": {"type": "boolean", "description": "Include full EXIF data"}}),
        None, (),
    ),
    # Translation and text
    (
        "translate_text",
        "Translate text between languages. Supports 50+ languages.",
        "translation", 0, 2, False, False,
        _schema({
            "text": {"type": "string", "description": "Text to translate"},
            "source_language": {"type": "string", "description": "Source language code (auto-detect if not specified)"},
            "target_language": {"type": "string", "description": 'Target language code (e.g., "pl", "en", "de")'},
            "preserve_formatting": {"type": "boolean", "description": "Whether to preserve text formatting"},
        }, ["text", "target_language"]),
        _validate_translate, (),
    ),
    (
        "generate_caption",
        "Generate caption, description, or alt text for an image.",
        "text_processing", 1, 5, True, False,
        _image_schema({
            "style": {
                "type": "string",
                "enum": ["descriptive", "creative", "seo", "alt-text", "social-media"],
                "description": "Style of caption to generate",
            },
            "language": {"type": "string", "description": 'Language for caption (e.g., "pl", "en")'},
            "max_length": {"type": "number", "description": "Maximum length in characters"},
            "include_hashtags": {"type": "boolean", "description": "Whether to include relevant hashtags"},
        }),
        None, (),
    ),
    (
        "rewrite_text",
        "Rewrite or improve text. Change tone, fix grammar, simplify.",
        "text_processing", 0, 3, False, False,
        _schema({
            "text": {"type": "string", "description": "Text to rewrite"},
            "task": {
                "type": "string",
                "enum": ["improve", "simplify", "formal", "casual", "fix-grammar", "expand", "summarize"],
                "description": "What to do with the text",
            },
            "language": {"type": "string", "description": "Target language"},
        }, ["text", "task"]),
        _validate_text, (),
    ),
    # File management
    (
        "create_zip",
        "Create ZIP archive from multiple files/images.",
        "file_management", 0, 5, False, False,
        _schema({
            "files": {"type": "array", "items": {"type": "string"}, "description": "Array of file URLs to include in ZIP"},
            "filename": {"type": "string", "description": "Name of the ZIP file (without extension)"},
        }, ["files"]),
        _validate_zip, ("files",),
    ),
    (
        "batch_process",
        "Apply the same operation to multiple images at once.",
        "file_management", 0, 30, True, True,
        _schema({
            "images": {"type": "array", "items": {"type": "string"}, "description": "Array of image URLs to process"},
            "operation": {
                "type": "string",
                "enum": ["resize", "compress", "convert", "remove_background", "watermark"],
                "description": "Operation to apply to all images",
            },
            "operation_params": {"type": "object", "description": "Parameters for the operation"},
        }, ["images", "operation"]),
        _validate_batch, ("images",),
    ),
    # Social media
    (
        "resize_for_social",
        "Resize image to optimal dimensions for social media platforms.",
        "social_media", 0, 5, True, True,
        _image_schema({
            "platforms": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Platforms to resize for (" + ", ".join(SOCIAL_PLATFORMS) + ")",
            },
            "smart_crop": {"type": "boolean", "description": "Use AI to find best crop area"},
        }, ["platforms"]),
        _validate_platforms, (),
    ),
    (
        "generate_social_pack",
        "Generate a complete social media content pack from one image.",
        "social_media", 2, 15, True, True,
        _image_schema({
            "platforms": {"type": "array", "items": {"type": "string"}, "description": "Platforms to generate for"},
            "include_captions": {"type": "boolean", "description": "Generate captions for each platform"},
            "caption_language": {"type": "string", "description": "Language for captions"},
        }, ["platforms"]),
        _validate_platforms, (),
    ),
]


def create_default_registry(backend: ProcessingBackend, billing: BillingService) -> ToolRegistry:
    """Build the registry with every built-in tool wired to ``backend`` and ``billing``."""
    registry = ToolRegistry()
    for name, description, category, credits, seconds, requires_image, produces_image, params, validator, image_params in _CATALOG:
        input_param = image_params[0] if image_params else ("image_url" if requires_image else None)
        registry.register(
            RegisteredTool(
                name=name,
                description=description,
                parameters=params,
                handler=remote_handler(name, backend, billing, credits, input_param=input_param),
                category=category,  # type: ignore[arg-type]
                credits_required=credits,
                estimated_time_seconds=seconds,
                requires_image=requires_image,
                produces_image=produces_image,
                validate_args=validator,
                image_params=image_params,
            )
        )

    registry.register(
        RegisteredTool(
            name="get_credits",
            description="Check current credit balance and usage statistics.",
            parameters=_schema({}),
            handler=_get_credits,
            category="utility",
            estimated_time_seconds=1,
        )
    )
    registry.register(
        RegisteredTool(
            name="get_session_history",
            description="Get history of operations performed in current session.",
            parameters=_schema({"limit": {"type": "number", "description": "Maximum number of operations to return"}}),
            handler=_get_session_history,
            category="utility",
            estimated_time_seconds=1,
        )
    )
    logger.debug("Registered %d built-in tools", len(registry))
    return registry
