"""Gemini image generation client.

One call to the ``generateContent`` REST endpoint per request. The response
is run through an ordered table of checks; the first image part of the first
candidate wins and everything after it is ignored.
"""

from __future__ import annotations
import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import requests

from fitting_room.config import DEFAULT_API_BASE, DEFAULT_MODEL

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_TYPE = "image/png"
FINISH_STOP = "STOP"
FINISH_SAFETY = "SAFETY"
ERROR_BODY_LIMIT = 512

# =============================================================================
# Content parts
# =============================================================================


@dataclass(frozen=True)
class ImagePart:
    data: bytes
    media_type: str = DEFAULT_IMAGE_TYPE

    def to_wire(self) -> Dict[str, Any]:
        return {
            "inlineData": {
                "mimeType": self.media_type,
                "data": base64.b64encode(self.data).decode("utf-8"),
            }
        }


@dataclass(frozen=True)
class TextPart:
    text: str

    def to_wire(self) -> Dict[str, Any]:
        return {"text": self.text}


ContentPart = Union[ImagePart, TextPart]


@dataclass(frozen=True)
class GeneratedImage:
    """Model output image. Decoded bytes plus the media type the model declared."""

    data: bytes
    media_type: str = DEFAULT_IMAGE_TYPE

    def to_part(self) -> ImagePart:
        return ImagePart(self.data, self.media_type)


# =============================================================================
# Errors
# =============================================================================


class GenerationError(Exception):
    """Base class for failures reported by, or derived from, the model response."""


class RequestBlockedError(GenerationError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(
            f"The request was blocked. Reason: {reason}. This can happen with selfies. "
            "Please try a different image or instruction."
        )


class NoCandidateError(GenerationError):
    def __init__(self):
        super().__init__("The model did not return a valid response. Please try again.")


class SafetyBlockError(GenerationError):
    def __init__(self):
        super().__init__(
            "Image generation was blocked for safety reasons. This can happen with "
            "images of people. Please try a different image."
        )


class GenerationStoppedError(GenerationError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Image generation stopped unexpectedly. Reason: {reason}.")


class TextInsteadOfImageError(GenerationError):
    def __init__(self, text: str):
        self.text = text
        super().__init__(f'The model returned a text message instead of an image: "{text}"')


class NoImageDataError(GenerationError):
    def __init__(self):
        super().__init__(
            "No image data was found in the response. The model may have declined "
            "to generate the image due to safety rules."
        )


class ApiError(GenerationError):
    """Non-2xx HTTP status from the endpoint."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Gemini API error {status_code}: {message}")


class UnknownModelError(GenerationError):
    def __init__(self):
        super().__init__("An unknown error occurred while communicating with the AI model.")


# =============================================================================
# Response model
# =============================================================================


def _pick(obj: Dict[str, Any], camel: str, snake: str) -> Any:
    """Read a field sent either in REST camelCase or SDK snake_case."""
    if camel in obj:
        return obj[camel]
    return obj.get(snake)


@dataclass(frozen=True)
class InlineImage:
    """Image part as received: base64 text, decoded only if it is the one returned."""

    data_b64: str
    media_type: str = DEFAULT_IMAGE_TYPE

    def decode(self) -> GeneratedImage:
        try:
            data = base64.b64decode(self.data_b64)
        except (binascii.Error, ValueError) as exc:
            logger.error("Gemini returned undecodable image data: %s", exc)
            raise UnknownModelError() from exc
        return GeneratedImage(data, self.media_type)


ResponsePart = Union[InlineImage, TextPart]


@dataclass
class Candidate:
    finish_reason: Optional[str] = None
    parts: List[ResponsePart] = field(default_factory=list)


@dataclass
class GenerateContentResponse:
    block_reason: Optional[str] = None
    candidates: List[Candidate] = field(default_factory=list)

    @property
    def first_candidate(self) -> Optional[Candidate]:
        return self.candidates[0] if self.candidates else None

    @property
    def text(self) -> Optional[str]:
        """Concatenated text parts of the first candidate, or None."""
        candidate = self.first_candidate
        if candidate is None:
            return None
        texts = [p.text for p in candidate.parts if isinstance(p, TextPart)]
        if not texts:
            return None
        return "".join(texts)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "GenerateContentResponse":
        feedback = _pick(data, "promptFeedback", "prompt_feedback") or {}
        candidates = [
            _parse_candidate(c) for c in (data.get("candidates") or []) if isinstance(c, dict)
        ]
        return cls(
            block_reason=_pick(feedback, "blockReason", "block_reason") or None,
            candidates=candidates,
        )


def _parse_candidate(raw: Dict[str, Any]) -> Candidate:
    content = raw.get("content") or {}
    parts: List[ResponsePart] = []
    for p in content.get("parts") or []:
        inline = _pick(p, "inlineData", "inline_data")
        if inline and inline.get("data"):
            parts.append(InlineImage(
                data_b64=inline["data"],
                media_type=_pick(inline, "mimeType", "mime_type") or DEFAULT_IMAGE_TYPE,
            ))
        elif "text" in p and not p.get("thought"):
            parts.append(TextPart(p["text"]))
    return Candidate(
        finish_reason=_pick(raw, "finishReason", "finish_reason") or None,
        parts=parts,
    )


# =============================================================================
# Classification tables
# =============================================================================


@dataclass(frozen=True)
class ResponseCheck:
    name: str
    applies: Callable[[GenerateContentResponse], bool]
    error: Callable[[GenerateContentResponse], GenerationError]


# Evaluated top to bottom before looking for an image.
RESPONSE_CHECKS: Sequence[ResponseCheck] = (
    ResponseCheck(
        "prompt_blocked",
        lambda r: bool(r.block_reason),
        lambda r: RequestBlockedError(r.block_reason),
    ),
    ResponseCheck(
        "no_candidate",
        lambda r: r.first_candidate is None,
        lambda r: NoCandidateError(),
    ),
    ResponseCheck(
        "safety_finish",
        lambda r: r.first_candidate.finish_reason == FINISH_SAFETY,
        lambda r: SafetyBlockError(),
    ),
    ResponseCheck(
        "abnormal_finish",
        lambda r: bool(r.first_candidate.finish_reason)
        and r.first_candidate.finish_reason != FINISH_STOP,
        lambda r: GenerationStoppedError(r.first_candidate.finish_reason),
    ),
)

# Evaluated when the first candidate carries no image part. The last row always applies.
MISSING_IMAGE_CHECKS: Sequence[ResponseCheck] = (
    ResponseCheck(
        "text_instead_of_image",
        lambda r: bool(r.text),
        lambda r: TextInsteadOfImageError(r.text),
    ),
    ResponseCheck(
        "no_image_data",
        lambda r: True,
        lambda r: NoImageDataError(),
    ),
)


def _first_failure(
    response: GenerateContentResponse, checks: Sequence[ResponseCheck]
) -> Optional[GenerationError]:
    for check in checks:
        if check.applies(response):
            logger.warning("Gemini response rejected by check %s", check.name)
            return check.error(response)
    return None


def extract_image(response: GenerateContentResponse) -> GeneratedImage:
    """Return the first image of the first candidate or raise the classified error."""
    error = _first_failure(response, RESPONSE_CHECKS)
    if error is not None:
        raise error

    for part in response.first_candidate.parts:
        if isinstance(part, InlineImage):
            return part.decode()

    error = _first_failure(response, MISSING_IMAGE_CHECKS)
    raise error


# =============================================================================
# HTTP client
# =============================================================================


class GeminiClient:
    """Thin wrapper over ``POST models/{model}:generateContent``."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        api_base: str = DEFAULT_API_BASE,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    def build_payload(self, parts: Sequence[ContentPart]) -> Dict[str, Any]:
        return {"contents": [{"role": "user", "parts": [p.to_wire() for p in parts]}]}

    def generate_image(self, parts: Sequence[ContentPart]) -> GeneratedImage:
        """Send ``parts`` in order and return the first image in the response.

        Args:
            parts: Ordered image and text parts forming one request.

        Returns:
            The generated image.

        Raises:
            requests.RequestException: transport failure, unchanged.
            GenerationError: any endpoint-reported or response-shape failure.
        """
        logger.info("Calling %s with %d part(s)", self.model, len(parts))
        try:
            data = self._post(parts)
            image = extract_image(GenerateContentResponse.from_json(data))
        except (GenerationError, requests.RequestException) as exc:
            logger.error("Error calling Gemini API: %s", exc)
            raise
        except Exception as exc:
            logger.exception("Unexpected failure handling Gemini response")
            raise UnknownModelError() from exc
        logger.info("Received %s image (%d bytes)", image.media_type, len(image.data))
        return image

    def _post(self, parts: Sequence[ContentPart]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}
        resp = self._session.post(
            self.url, headers=headers, json=self.build_payload(parts), timeout=self.timeout
        )
        if resp.status_code != 200:
            raise ApiError(resp.status_code, _error_message(resp))
        try:
            data = resp.json()
        except ValueError as exc:
            raise UnknownModelError() from exc
        if not isinstance(data, dict):
            raise UnknownModelError()
        return data


def _error_message(resp: requests.Response) -> str:
    try:
        message = resp.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        message = resp.text
    return str(message)[:ERROR_BODY_LIMIT]
