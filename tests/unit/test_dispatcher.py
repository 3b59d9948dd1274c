"""Unit tests for storyimage.core.dispatcher."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from storyimage.core.dispatcher import ImageDispatcher, provider_error_from
from storyimage.core.errors import NoImageReturnedError, ProviderError
from storyimage.core.validation import validate_edit_request, validate_generate_request


def _status_error(status: int, message: str, request_id: str | None = None):
    """Build a real SDK status error as the client would raise it."""
    headers = {"x-request-id": request_id} if request_id else {}
    request = httpx.Request("POST", "https://api.openai.com/v1/images/generations")
    response = httpx.Response(status, headers=headers, request=request)
    return openai.APIStatusError(
        f"Error code: {status}",
        response=response,
        body={"message": message, "type": "invalid_request_error"},
    )


class TestGenerateDispatch:
    """Tests for dispatching GenerateJob."""

    def test_pure_generation_calls_generate(self, dispatcher, fake_provider, generate_payload, png_b64):
        result = dispatcher.dispatch(validate_generate_request(generate_payload))

        assert result.b64 == png_b64
        assert result.mime_type == "image/png"
        fake_provider.images.generate.assert_called_once_with(
            model="gpt-image-1",
            prompt="a red fox",
            size="1024x1024",
            quality="low",
            output_format="png",
        )
        fake_provider.images.edit.assert_not_called()

    def test_jpeg_forwards_compression(self, dispatcher, fake_provider, generate_payload):
        generate_payload.update(output_format="jpeg", output_compression=65)
        result = dispatcher.dispatch(validate_generate_request(generate_payload))

        assert result.mime_type == "image/jpeg"
        kwargs = fake_provider.images.generate.call_args.kwargs
        assert kwargs["output_format"] == "jpeg"
        assert kwargs["output_compression"] == 65

    def test_png_never_forwards_compression(self, dispatcher, fake_provider, generate_payload):
        generate_payload["output_compression"] = 10
        dispatcher.dispatch(validate_generate_request(generate_payload))
        assert "output_compression" not in fake_provider.images.generate.call_args.kwargs

    def test_references_use_edit_endpoint(self, dispatcher, fake_provider, generate_payload, png_b64, png_bytes):
        generate_payload["reference_images"] = [
            {"name": "a.png", "mime_type": "image/png", "b64": png_b64},
            {"name": "b.png", "mime_type": "image/png", "b64": png_b64},
        ]
        dispatcher.dispatch(validate_generate_request(generate_payload))

        fake_provider.images.generate.assert_not_called()
        kwargs = fake_provider.images.edit.call_args.kwargs
        assert kwargs["image"] == [
            ("a.png", png_bytes, "image/png"),
            ("b.png", png_bytes, "image/png"),
        ]
        assert kwargs["prompt"] == "a red fox"

    def test_custom_model(self, fake_provider, generate_payload):
        ImageDispatcher(fake_provider, model="gpt-image-1-mini").dispatch(
            validate_generate_request(generate_payload)
        )
        assert fake_provider.images.generate.call_args.kwargs["model"] == "gpt-image-1-mini"


class TestEditDispatch:
    """Tests for dispatching EditJob."""

    def test_source_sent_before_references(self, dispatcher, fake_provider, edit_payload, png_bytes, jpeg_b64):
        edit_payload["reference_images"] = [
            {"name": "style.jpg", "mime_type": "image/jpeg", "b64": jpeg_b64}
        ]
        dispatcher.dispatch(validate_edit_request(edit_payload))

        images = fake_provider.images.edit.call_args.kwargs["image"]
        assert images[0] == ("source.png", png_bytes, "image/png")
        assert images[1][0] == "style.jpg"
        assert len(images) == 2

    def test_edit_without_references(self, dispatcher, fake_provider, edit_payload):
        dispatcher.dispatch(validate_edit_request(edit_payload))
        assert len(fake_provider.images.edit.call_args.kwargs["image"]) == 1
        fake_provider.images.generate.assert_not_called()


class TestMissingImage:
    """The provider answered but returned no image."""

    def test_generate_without_data(self, dispatcher, fake_provider, generate_payload):
        fake_provider.images.generate.return_value = SimpleNamespace(data=[])
        with pytest.raises(NoImageReturnedError, match="No image returned by API"):
            dispatcher.dispatch(validate_generate_request(generate_payload))

    def test_generate_with_empty_payload(self, dispatcher, fake_provider, generate_payload, provider_response):
        fake_provider.images.generate.return_value = provider_response(None)
        with pytest.raises(NoImageReturnedError):
            dispatcher.dispatch(validate_generate_request(generate_payload))

    def test_edit_without_data(self, dispatcher, fake_provider, edit_payload):
        fake_provider.images.edit.return_value = SimpleNamespace(data=None)
        with pytest.raises(NoImageReturnedError, match="No edited image returned by API"):
            dispatcher.dispatch(validate_edit_request(edit_payload))

    def test_first_image_is_used(self, dispatcher, fake_provider, generate_payload, provider_response):
        fake_provider.images.generate.return_value = provider_response("Zmlyc3Q=", "c2Vjb25k")
        result = dispatcher.dispatch(validate_generate_request(generate_payload))
        assert result.b64 == "Zmlyc3Q="


class TestProviderFailures:
    """SDK errors become ProviderError."""

    def test_status_error_details(self, dispatcher, fake_provider, generate_payload):
        fake_provider.images.generate.side_effect = _status_error(
            400, "Invalid size for model", request_id="req_123"
        )
        with pytest.raises(ProviderError) as exc_info:
            dispatcher.dispatch(validate_generate_request(generate_payload))

        error = exc_info.value
        assert error.message == "Invalid size for model"
        assert error.provider_status == 400
        assert error.request_id == "req_123"
        assert str(error) == "Invalid size for model (status 400, request id req_123)"
        assert error.status_code == 500

    def test_safety_rejection_gets_guidance(self, dispatcher, fake_provider, generate_payload):
        fake_provider.images.generate.side_effect = _status_error(
            400, "Your request was rejected by the Safety system.", request_id="req_abc"
        )
        with pytest.raises(ProviderError) as exc_info:
            dispatcher.dispatch(validate_generate_request(generate_payload))

        message = str(exc_info.value)
        assert "simpler" in message
        assert "req_abc" in message
        assert exc_info.value.is_safety_block

    def test_connection_error(self, dispatcher, fake_provider, edit_payload):
        request = httpx.Request("POST", "https://api.openai.com/v1/images/edits")
        fake_provider.images.edit.side_effect = openai.APIConnectionError(request=request)
        with pytest.raises(ProviderError) as exc_info:
            dispatcher.dispatch(validate_edit_request(edit_payload))

        assert exc_info.value.provider_status is None
        assert exc_info.value.request_id is None
        assert "Connection error" in str(exc_info.value)

    def test_no_retry(self, dispatcher, fake_provider, generate_payload):
        fake_provider.images.generate.side_effect = _status_error(500, "Server error")
        with pytest.raises(ProviderError):
            dispatcher.dispatch(validate_generate_request(generate_payload))
        assert fake_provider.images.generate.call_count == 1

    def test_non_sdk_errors_propagate(self, dispatcher, fake_provider, generate_payload):
        fake_provider.images.generate.side_effect = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            dispatcher.dispatch(validate_generate_request(generate_payload))


class TestProviderErrorFrom:
    """Tests for provider_error_from."""

    def test_prefers_body_message(self):
        exc = MagicMock(body={"message": "from body"}, message="from sdk", status_code=429, request_id=None)
        error = provider_error_from(exc)
        assert error.message == "from body"
        assert error.provider_status == 429

    def test_falls_back_to_str(self):
        error = provider_error_from(ValueError("plain failure"))
        assert error.message == "plain failure"
        assert error.provider_status is None


class TestProviderErrorMessage:
    """Tests for ProviderError.describe."""

    @pytest.mark.parametrize(
        "message",
        ["Blocked by safety system", "content POLICY VIOLATION detected", "SAFETY"],
    )
    def test_safety_terms_case_insensitive(self, message):
        assert ProviderError(message).is_safety_block

    def test_ordinary_message_has_no_guidance(self):
        error = ProviderError("Rate limit reached", status_code=429)
        assert str(error) == "Rate limit reached (status 429)"
        assert not error.is_safety_block

    def test_safety_without_request_id(self):
        message = str(ProviderError("safety rejection"))
        assert "simpler" in message
        assert "request id" not in message

    def test_safety_message_ending_in_period(self):
        message = str(ProviderError("Blocked by the safety system."))
        assert message.startswith("Blocked by the safety system. This looks like")
        assert ".." not in message


class TestFromApiKey:
    def test_builds_openai_client(self):
        dispatcher = ImageDispatcher.from_api_key("sk-test", model="gpt-image-1", timeout=30)
        assert isinstance(dispatcher.client, openai.OpenAI)
        assert dispatcher.model == "gpt-image-1"
