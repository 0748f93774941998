"""Application state and the generate/edit operations."""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from fitting_room.gemini import ContentPart, GeneratedImage, TextPart
from fitting_room.intake import UploadedImage

logger = logging.getLogger(__name__)

TRY_ON_INSTRUCTION = (
    "Using the person from the first image (the selfie) and the clothing item from the "
    "second image, generate a new, realistic image of the person wearing that clothing. "
    "The person should maintain their original appearance (face, body shape). "
    "Place them against a neutral studio background."
)

MISSING_INPUTS_MESSAGE = "Please upload both a selfie and a clothing image."
MISSING_EDIT_INPUTS_MESSAGE = "Please generate an image first and enter an edit instruction."
GENERATE_FAILED_MESSAGE = "Failed to generate the image. Please try again."
EDIT_FAILED_MESSAGE = "Failed to edit the image. Please try again."


class Operation(str, Enum):
    GENERATE = "generate"
    EDIT = "edit"


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Running:
    operation: Operation


RunState = Union[Idle, Running]
IDLE = Idle()


@dataclass
class FittingRoomState:
    selfie: Optional[UploadedImage] = None
    clothing: Optional[UploadedImage] = None
    generated: Optional[GeneratedImage] = None
    edit_prompt: str = ""
    error: Optional[str] = None
    run_state: RunState = field(default=IDLE)
    last_operation: Optional[Operation] = None

    @property
    def busy(self) -> bool:
        return isinstance(self.run_state, Running)

    @property
    def can_generate(self) -> bool:
        return not self.busy and self.selfie is not None and self.clothing is not None

    @property
    def can_edit(self) -> bool:
        return not self.busy and self.generated is not None and bool(self.edit_prompt)


class FittingRoomController:
    """Sequences the generation client over a :class:`FittingRoomState`.

    ``begin`` validates and moves to ``Running``; ``run_pending`` performs the
    call and always returns to ``Idle``. The browser app re-renders between
    the two so the triggering controls show as disabled.
    """

    def __init__(self, client, state: Optional[FittingRoomState] = None):
        self.client = client
        self.state = state if state is not None else FittingRoomState()

    def generate(self) -> bool:
        """Validate and run a generate call. Returns True on success."""
        return self.begin(Operation.GENERATE) and self.run_pending()

    def edit(self) -> bool:
        """Validate and run an edit call. Returns True on success."""
        return self.begin(Operation.EDIT) and self.run_pending()

    def begin(self, operation: Operation) -> bool:
        state = self.state
        if state.busy:
            logger.debug("Ignoring %s while %s is running", operation.value, state.run_state)
            return False

        if operation is Operation.GENERATE:
            if state.selfie is None or state.clothing is None:
                state.error = MISSING_INPUTS_MESSAGE
                return False
            state.generated = None
        else:
            if state.generated is None or not state.edit_prompt:
                state.error = MISSING_EDIT_INPUTS_MESSAGE
                return False

        state.error = None
        state.last_operation = operation
        state.run_state = Running(operation)
        return True

    def run_pending(self) -> bool:
        state = self.state
        if not isinstance(state.run_state, Running):
            return False
        operation = state.run_state.operation
        try:
            parts = self._build_parts(operation)
            state.generated = self.client.generate_image(parts)
            if operation is Operation.EDIT:
                state.edit_prompt = ""
            logger.info("%s finished", operation.value)
            return True
        except Exception as exc:
            logger.exception("%s failed", operation.value)
            state.error = describe_error(exc, operation)
            return False
        finally:
            state.run_state = IDLE

    def _build_parts(self, operation: Operation) -> List[ContentPart]:
        state = self.state
        if operation is Operation.GENERATE:
            return [state.selfie.to_part(), state.clothing.to_part(), TextPart(TRY_ON_INSTRUCTION)]
        return [state.generated.to_part(), TextPart(state.edit_prompt)]


def describe_error(exc: BaseException, operation: Operation) -> str:
    """Display text for a failed call."""
    message = str(exc).strip()
    if message:
        return message
    return GENERATE_FAILED_MESSAGE if operation is Operation.GENERATE else EDIT_FAILED_MESSAGE
