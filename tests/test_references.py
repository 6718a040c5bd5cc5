"""Tests for image reference parsing and resolution."""

from __future__ import annotations

import pytest

from image_agent.errors import ValidationError
from image_agent.models import ImageArtifact, ToolExecutionResult
from image_agent.tools.references import (
    NO_IMAGE_MESSAGE,
    ImageRef,
    artifact_key,
    parse_ref,
    resolve_image_args,
    resolve_ref,
    uploaded_key,
)

UPLOAD = "data:image/png;base64,AAA"


class TestParseRef:
    def test_sentinel_is_case_insensitive(self, make_context) -> None:
        ctx = make_context()
        assert parse_ref("UPLOADED_IMAGE", ctx) == ImageRef("uploaded")
        assert parse_ref("uploaded_image", ctx) == ImageRef("uploaded")

    def test_missing_value_means_upload(self, make_context) -> None:
        assert parse_ref(None, make_context()).kind == "uploaded"
        assert parse_ref("  ", make_context()).kind == "uploaded"

    def test_previous_call_id_is_artifact(self, make_context) -> None:
        ctx = make_context(previous_results={"call_1": ToolExecutionResult(success=True)})
        assert parse_ref("call_1", ctx) == ImageRef("artifact", "call_1")

    def test_artifact_key_is_artifact(self, make_context) -> None:
        key = artifact_key(0, "call_1")
        ctx = make_context(artifacts={key: ImageArtifact(key=key, url="https://x/1.png")})
        assert parse_ref(key, ctx) == ImageRef("artifact", key)

    def test_url_is_literal(self, make_context) -> None:
        assert parse_ref("https://example.com/cat.png", make_context()) == ImageRef(
            "literal", "https://example.com/cat.png"
        )

    def test_non_string_rejected(self, make_context) -> None:
        with pytest.raises(ValidationError):
            parse_ref(42, make_context())


class TestResolveRef:
    def test_uploaded_resolves_to_exact_value(self, make_context) -> None:
        assert resolve_ref(ImageRef("uploaded"), make_context(uploaded_images=[UPLOAD])) == UPLOAD

    def test_uploaded_without_images(self, make_context) -> None:
        with pytest.raises(ValidationError, match="No image provided"):
            resolve_ref(ImageRef("uploaded"), make_context())

    def test_call_id_resolves_through_image_ref(self, make_context) -> None:
        key = artifact_key(1, "call_3")
        ctx = make_context(
            previous_results={"call_3": ToolExecutionResult(success=True, data={"image_ref": key})},
            artifacts={key: ImageArtifact(key=key, url="data:image/png;base64,OUT")},
        )
        assert resolve_ref(ImageRef("artifact", "call_3"), ctx) == "data:image/png;base64,OUT"

    def test_call_id_falls_back_to_result_url(self, make_context) -> None:
        ctx = make_context(
            previous_results={"call_3": ToolExecutionResult(success=True, data={"resultUrl": "https://x/out.png"})}
        )
        assert resolve_ref(ImageRef("artifact", "call_3"), ctx) == "https://x/out.png"

    def test_failed_call_does_not_resolve(self, make_context) -> None:
        ctx = make_context(previous_results={"call_3": ToolExecutionResult(success=False, error="boom")})
        with pytest.raises(ValidationError, match="call_3"):
            resolve_ref(ImageRef("artifact", "call_3"), ctx)

    def test_uploaded_key_resolves(self, make_context) -> None:
        key = uploaded_key(0)
        ctx = make_context(artifacts={key: ImageArtifact(key=key, url=UPLOAD)})
        assert resolve_ref(parse_ref(key, ctx), ctx) == UPLOAD


class TestResolveImageArgs:
    def test_only_image_params_are_touched(self, make_context) -> None:
        ctx = make_context(uploaded_images=[UPLOAD])
        resolved = resolve_image_args(
            {"image_url": "UPLOADED_IMAGE", "scale": "2x"}, ("image_url",), ctx, fallback_param="image_url"
        )
        assert resolved == {"image_url": UPLOAD, "scale": "2x"}

    def test_optional_param_stays_omitted(self, make_context) -> None:
        ctx = make_context(uploaded_images=[UPLOAD])
        resolved = resolve_image_args(
            {"image_url": UPLOAD}, ("image_url", "mask_url"), ctx, fallback_param="image_url"
        )
        assert "mask_url" not in resolved

    def test_array_fallback_uses_all_uploads(self, make_context) -> None:
        ctx = make_context(uploaded_images=[UPLOAD, "https://x/2.png"])
        resolved = resolve_image_args(
            {"operation": "compress"}, ("images",), ctx, fallback_param="images", array_params=frozenset({"images"})
        )
        assert resolved["images"] == [UPLOAD, "https://x/2.png"]

    def test_list_values_resolved_elementwise(self, make_context) -> None:
        ctx = make_context(uploaded_images=[UPLOAD])
        resolved = resolve_image_args({"files": ["UPLOADED_IMAGE", "https://x/a.png"]}, ("files",), ctx)
        assert resolved["files"] == [UPLOAD, "https://x/a.png"]

    def test_array_fallback_without_uploads(self, make_context) -> None:
        with pytest.raises(ValidationError) as exc_info:
            resolve_image_args({}, ("images",), make_context(), fallback_param="images", array_params=frozenset({"images"}))
        assert exc_info.value.message == NO_IMAGE_MESSAGE
