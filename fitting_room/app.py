#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Virtual Fitting Room — Streamlit app

Upload a selfie and a clothing image, generate a picture of yourself wearing
the clothes, then optionally refine it with a free-text instruction.

Run
  pip install -e .
  export API_KEY="..."
  fitting-room            # or: streamlit run fitting_room/app.py
"""

from __future__ import annotations
import logging
from typing import MutableMapping, Optional

import streamlit as st

from fitting_room.config import MissingApiKeyError, Settings, load_settings
from fitting_room.controller import FittingRoomController, FittingRoomState, Operation
from fitting_room.gemini import GeminiClient
from fitting_room.intake import IntakeError, accepted_extensions, load_upload

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration & Constants
# =============================================================================

APP_TITLE = "Virtual Fitting Room"
TAGLINE = "Try on new clothes instantly with AI."
PRIVACY_NOTE = (
    "Images are sent to the Gemini API and kept only in this browser session. "
    "Do not upload sensitive content."
)

CONTROLLER_KEY = "fitting_room_controller"
EDIT_PROMPT_KEY = "edit_prompt_input"
SELFIE_UPLOAD_KEY = "selfie_upload"
CLOTHING_UPLOAD_KEY = "clothing_upload"
REJECTED_UPLOADS_KEY = "rejected_uploads"

BUSY_TEXT = {
    Operation.GENERATE: "Generating your new look... This may take a moment.",
    Operation.EDIT: "Refining your image... This may take a moment.",
}

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_controller(settings: Settings) -> FittingRoomController:
    """Return the per-session controller, creating it (and its HTTP session) on first use."""
    controller = st.session_state.get(CONTROLLER_KEY)
    if controller is None:
        client = GeminiClient(
            api_key=settings.api_key,
            model=settings.model,
            api_base=settings.api_base,
            timeout=settings.timeout,
        )
        controller = FittingRoomController(client, FittingRoomState())
        st.session_state[CONTROLLER_KEY] = controller
    return controller


# =============================================================================
# Callbacks
# =============================================================================

def on_generate(controller: FittingRoomController) -> None:
    controller.begin(Operation.GENERATE)


def on_edit(controller: FittingRoomController) -> None:
    controller.state.edit_prompt = st.session_state.get(EDIT_PROMPT_KEY, "")
    controller.begin(Operation.EDIT)


def on_prompt_change(controller: FittingRoomController) -> None:
    controller.state.edit_prompt = st.session_state.get(EDIT_PROMPT_KEY, "")


# =============================================================================
# UI Helpers
# =============================================================================

def show_header():
    st.title(APP_TITLE)
    st.caption(TAGLINE)


def show_sidebar(settings: Settings):
    st.sidebar.markdown("### Settings")
    st.sidebar.caption(f"Model: {settings.model}")
    st.sidebar.caption(f"API key source: {settings.api_key_source}")
    st.sidebar.caption(PRIVACY_NOTE)


def sync_upload(
    controller: FittingRoomController,
    attr: str,
    uploaded,
    rejected: MutableMapping[str, str],
) -> None:
    """Copy an uploader value into state, skipping uploads already processed.

    ``rejected`` maps ``attr`` to the id of the last upload that failed intake,
    so a rejected file left in the widget is reported once, not on every rerun.
    """
    state = controller.state
    if uploaded is None:
        setattr(state, attr, None)
        rejected.pop(attr, None)
        return
    upload_id = getattr(uploaded, "file_id", None) or f"{uploaded.name}:{uploaded.size}"
    current = getattr(state, attr)
    if current is not None and current.upload_id == upload_id:
        return
    if rejected.get(attr) == upload_id:
        return
    try:
        image = load_upload(uploaded.name, uploaded.getvalue(), uploaded.type, upload_id)
    except IntakeError as exc:
        logger.warning("Rejected upload: %s", exc)
        setattr(state, attr, None)
        rejected[attr] = upload_id
        state.error = str(exc)
        return
    rejected.pop(attr, None)
    setattr(state, attr, image)


def rejected_uploads() -> MutableMapping[str, str]:
    return st.session_state.setdefault(REJECTED_UPLOADS_KEY, {})


def uploader(controller: FittingRoomController, label: str, key: str, attr: str):
    state = controller.state
    uploaded = st.file_uploader(
        label,
        type=accepted_extensions(),
        key=key,
        disabled=state.busy,
        help="Click to upload or drag and drop. PNG, JPG or WEBP.",
    )
    if not state.busy:
        sync_upload(controller, attr, uploaded, rejected_uploads())
    image = getattr(state, attr)
    if image is not None:
        st.image(image.preview, caption="Preview", use_container_width=True)


def result_extension(media_type: str) -> str:
    return _EXTENSIONS.get(media_type, "png")


def show_result(controller: FittingRoomController):
    state = controller.state
    if state.busy:
        return
    if state.generated is None:
        st.info(
            "Your generated image will appear here. Upload both images and click "
            '"Generate your look" to start.'
        )
        return

    st.image(state.generated.data, caption="Generated look", use_container_width=True)
    st.download_button(
        "Download result",
        data=state.generated.data,
        file_name=f"fitting_room_result.{result_extension(state.generated.media_type)}",
        mime=state.generated.media_type,
    )


def edit_button_disabled(state: FittingRoomState) -> bool:
    # the prompt only commits on Enter or blur, so an empty prompt is left to begin()
    return state.busy


def show_edit_row(controller: FittingRoomController):
    state = controller.state
    if state.generated is None or state.busy:
        return

    # state is the source of truth; the widget is reseeded before it is created
    st.session_state[EDIT_PROMPT_KEY] = state.edit_prompt
    st.markdown("**3. Edit the image (optional)**")
    prompt_col, button_col = st.columns([4, 1])
    with prompt_col:
        st.text_input(
            "Edit instruction",
            key=EDIT_PROMPT_KEY,
            placeholder="e.g. 'Change the background to a beach' or 'Make the shirt blue'",
            label_visibility="collapsed",
            on_change=on_prompt_change,
            args=(controller,),
        )
    with button_col:
        st.button(
            "Edit",
            disabled=edit_button_disabled(state),
            on_click=on_edit,
            args=(controller,),
            use_container_width=True,
        )


def run_pending(controller: FittingRoomController, area) -> None:
    """Perform a queued operation under a spinner, then rerun to re-enable controls."""
    state = controller.state
    if not state.busy:
        return
    with area:
        with st.spinner(BUSY_TEXT[state.run_state.operation]):
            controller.run_pending()
    st.rerun()


# =============================================================================
# App Entry
# =============================================================================

def load_or_stop() -> Optional[Settings]:
    try:
        return load_settings(secrets=st.secrets)
    except (MissingApiKeyError, ValueError) as exc:
        logger.error("Startup failed: %s", exc)
        st.error(str(exc))
        st.stop()
    return None


def main():
    st.set_page_config(page_title=APP_TITLE, layout="wide")
    settings = load_or_stop()
    configure_logging(settings.log_level)

    controller = get_controller(settings)
    state = controller.state

    show_header()
    show_sidebar(settings)
    error_slot = st.empty()

    left, right = st.columns([1, 2])
    with left:
        uploader(controller, "1. Upload your selfie", SELFIE_UPLOAD_KEY, "selfie")
        uploader(controller, "2. Upload the clothing", CLOTHING_UPLOAD_KEY, "clothing")

    with right:
        st.button(
            "Generate your look",
            type="primary",
            disabled=not state.can_generate,
            on_click=on_generate,
            args=(controller,),
            use_container_width=True,
        )
        result_area = st.container()
        with result_area:
            show_result(controller)
        show_edit_row(controller)

    if state.error:
        error_slot.error(state.error)

    run_pending(controller, result_area)


if __name__ == "__main__":
    main()
