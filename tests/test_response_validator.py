"""Tests for response validation and extraction."""

import base64

import pytest

from gemini_resilience.exceptions import (
    ContentFilteredError,
    EmptyResponseError,
    MalformedResponseError,
)
from gemini_resilience.response_validator import (
    MAX_SNIPPET_CHARS,
    Empty,
    Filtered,
    Malformed,
    ResponseOutcome,
    Success,
    extract_binary,
    extract_masks,
    extract_structured,
    extract_text,
    strip_code_fences,
)


def candidate(**fields):
    return {"candidates": [fields]}


def parts_response(*parts):
    return candidate(content={"role": "model", "parts": list(parts)})


class TestOutcomes:
    """Tests for the outcome variants."""

    def test_variant_without_error_mapping_cannot_be_created(self):
        """Should require every outcome variant to define its error."""

        class Incomplete(ResponseOutcome):
            pass

        with pytest.raises(TypeError):
            Incomplete()

    @pytest.mark.parametrize(
        "outcome, error_type",
        [
            (Empty(), EmptyResponseError),
            (Filtered("SAFETY"), ContentFilteredError),
            (Malformed("no parts"), MalformedResponseError),
        ],
    )
    def test_failed_outcomes_map_to_errors(self, outcome, error_type):
        """Should raise the matching typed error on unwrap."""
        assert not outcome.ok
        with pytest.raises(error_type):
            outcome.unwrap()


class TestExtractText:
    """Tests for text extraction."""

    def test_first_non_blank_part_trimmed(self):
        """Should return the first non-blank text part, trimmed."""
        response = parts_response({"text": "   "}, {"text": "  Hello there \n"}, {"text": "later"})

        assert extract_text(response) == Success("Hello there")

    def test_role_only_content_is_malformed(self):
        """Should classify content with a role and no parts as malformed."""
        outcome = extract_text(candidate(content={"role": "model"}))

        assert isinstance(outcome, Malformed)
        assert "role" in outcome.snippet

    def test_all_blank_is_empty(self):
        """Should classify blank text parts as an empty response."""
        outcome = extract_text(parts_response({"text": ""}, {"text": " \t"}))

        assert isinstance(outcome, Empty)
        with pytest.raises(EmptyResponseError):
            outcome.unwrap()

    def test_safety_finish_reason_is_filtered(self):
        """Should classify a SAFETY finish reason as filtered."""
        outcome = extract_text(candidate(finishReason="SAFETY"))

        assert isinstance(outcome, Filtered)
        assert isinstance(outcome.to_error(), ContentFilteredError)

    def test_blocked_prompt_is_filtered(self):
        """Should classify a blocked prompt as filtered."""
        outcome = extract_text({"promptFeedback": {"blockReason": "OTHER"}})

        assert isinstance(outcome, Filtered)
        assert "OTHER" in outcome.reason

    @pytest.mark.parametrize(
        "response",
        [
            None,
            "plain string",
            42,
            [],
            {},
            {"candidates": []},
            {"candidates": "oops"},
            {"candidates": [None]},
            {"candidates": [{"content": "text"}]},
            {"candidates": [{"content": {"parts": []}}]},
            {"candidates": [{"content": {"parts": [{"inlineData": {}}]}}]},
        ],
    )
    def test_adversarial_inputs_are_malformed(self, response):
        """Should return Malformed for any broken structure, never raise."""
        outcome = extract_text(response)

        assert isinstance(outcome, Malformed)
        with pytest.raises(MalformedResponseError):
            outcome.unwrap()


class TestExtractBinary:
    """Tests for inline image extraction."""

    def test_decodes_first_image_part(self):
        """Should decode the first image inline-data part."""
        data = b"\x89PNG\r\n\x1a\nfake"
        response = parts_response(
            {"text": "Here you go"},
            {"inline_data": {"mime_type": "image/png", "data": base64.b64encode(data).decode()}},
        )

        assert extract_binary(response) == Success(data)

    def test_camel_case_keys(self):
        """Should accept the camelCase inlineData form."""
        data = b"jpeg-bytes"
        response = parts_response(
            {"inlineData": {"mimeType": "image/jpeg", "data": base64.b64encode(data).decode()}}
        )

        assert extract_binary(response).unwrap() == data

    def test_skips_non_image_parts(self):
        """Should ignore inline data that is not an image."""
        response = parts_response(
            {"inline_data": {"mime_type": "application/pdf", "data": "AAAA"}}
        )

        assert isinstance(extract_binary(response), Malformed)

    def test_text_only_is_malformed(self):
        """Should report a missing image as malformed."""
        assert isinstance(extract_binary(parts_response({"text": "no image"})), Malformed)

    def test_invalid_base64_is_malformed(self):
        """Should report undecodable data as malformed."""
        response = parts_response(
            {"inline_data": {"mime_type": "image/png", "data": "not base64 at all!"}}
        )

        assert isinstance(extract_binary(response), Malformed)

    def test_filtered_image(self):
        """Should surface an image safety stop as filtered."""
        assert isinstance(extract_binary(candidate(finishReason="IMAGE_SAFETY")), Filtered)


class TestExtractStructured:
    """Tests for embedded JSON parsing."""

    def test_strips_code_fences(self):
        """Should parse JSON wrapped in a markdown fence."""
        raw = '```json\n[{"label": "cat", "box_2d": [1, 2, 3, 4]}]\n```'

        assert extract_structured(raw) == Success([{"label": "cat", "box_2d": [1, 2, 3, 4]}])

    def test_plain_json_object(self):
        """Should parse bare JSON."""
        assert extract_structured('{"masks": []}') == Success({"masks": []})

    def test_fallback_extracts_outermost_value(self):
        """Should recover JSON embedded in surrounding prose."""
        raw = 'Sure! Here are the results: [{"label": "dog"}, {"label": "cat"}] Hope it helps.'

        assert extract_structured(raw).unwrap() == [{"label": "dog"}, {"label": "cat"}]

    def test_fallback_prefers_earliest_bracket(self):
        """Should treat the first opening bracket as the outermost value."""
        raw = 'Result: {"masks": [{"label": "a"}]} done'

        assert extract_structured(raw).unwrap() == {"masks": [{"label": "a"}]}

    def test_unparseable_preserves_raw_text(self):
        """Should keep the offending text in the snippet."""
        raw = "I could not find any objects in this image."

        outcome = extract_structured(raw)

        assert isinstance(outcome, Malformed)
        assert outcome.snippet == raw

    def test_long_snippet_is_truncated(self):
        """Should truncate very long raw text in the snippet."""
        raw = "x" * (MAX_SNIPPET_CHARS + 50)

        outcome = extract_structured(raw)

        assert outcome.snippet.endswith("...[truncated]")
        assert len(outcome.snippet) == MAX_SNIPPET_CHARS + len("...[truncated]")

    def test_scalar_json_is_malformed(self):
        """Should reject JSON that is not an array or object."""
        assert isinstance(extract_structured("42"), Malformed)

    def test_blank_is_empty(self):
        """Should report blank text as empty."""
        assert isinstance(extract_structured("```json\n```"), Empty)

    def test_non_text_is_malformed(self):
        """Should reject non-string input without raising."""
        assert isinstance(extract_structured({"a": 1}), Malformed)

    def test_strip_code_fences_without_language(self):
        """Should strip a fence with no language tag."""
        assert strip_code_fences("```\n{}\n```") == "{}"


class TestExtractMasks:
    """Tests for segmentation mask normalisation."""

    def test_list_becomes_masks(self):
        """Should wrap a bare list as the masks field."""
        raw = '[{"label": "cat", "mask": "data"}]'

        assert extract_masks(raw).unwrap() == {"masks": [{"label": "cat", "mask": "data"}]}

    def test_object_gets_default_masks(self):
        """Should default a missing masks field to an empty list."""
        assert extract_masks('{"note": "none found"}').unwrap() == {
            "note": "none found",
            "masks": [],
        }

    def test_non_list_masks_is_malformed(self):
        """Should reject a masks field that is not a list."""
        assert isinstance(extract_masks('{"masks": "oops"}'), Malformed)
