"""
Tests for the Streamlit page helpers that do not need a running script.
"""

import inspect

import streamlit as st

from fitting_room import app
from fitting_room.config import Settings
from fitting_room.controller import FittingRoomController, FittingRoomState, Operation, Running
from fitting_room.gemini import GeneratedImage
from tests.conftest import make_png


class FakeUpload:
    """Mimics Streamlit's UploadedFile."""

    def __init__(self, name, data, type, file_id):
        self.name = name
        self.type = type
        self.size = len(data)
        self.file_id = file_id
        self._data = data
        self.reads = 0

    def getvalue(self):
        self.reads += 1
        return self._data


def controller(**fields):
    return FittingRoomController(client=None, state=FittingRoomState(**fields))


def test_image_supports_container_width():
    """The installed Streamlit accepts the st.image keyword the page uses."""
    assert "use_container_width" in inspect.signature(st.image).parameters


def test_valid_upload_is_stored_once():
    ctl = controller()
    upload = FakeUpload("me.png", make_png(), "image/png", "id-1")
    rejected = {}

    app.sync_upload(ctl, "selfie", upload, rejected)
    app.sync_upload(ctl, "selfie", upload, rejected)

    assert ctl.state.selfie.upload_id == "id-1"
    assert upload.reads == 1
    assert rejected == {}


def test_rejected_upload_reported_once():
    """A rejected file left in the widget does not overwrite later errors."""
    ctl = controller()
    upload = FakeUpload("anim.gif", b"GIF89a", "image/gif", "id-2")
    rejected = {}

    app.sync_upload(ctl, "clothing", upload, rejected)
    assert "unsupported file type" in ctl.state.error
    assert rejected == {"clothing": "id-2"}

    ctl.state.error = "Failed to edit the image. Please try again."
    app.sync_upload(ctl, "clothing", upload, rejected)

    assert ctl.state.error == "Failed to edit the image. Please try again."
    assert ctl.state.clothing is None
    assert upload.reads == 1


def test_replacing_rejected_upload_clears_marker():
    ctl = controller()
    rejected = {"selfie": "id-bad"}

    app.sync_upload(ctl, "selfie", FakeUpload("me.png", make_png(), "image/png", "id-ok"), rejected)

    assert ctl.state.selfie is not None
    assert rejected == {}


def test_removed_upload_clears_state():
    ctl = controller()
    rejected = {"selfie": "id-bad"}
    app.sync_upload(ctl, "selfie", FakeUpload("me.png", make_png(), "image/png", "id-1"), rejected)

    app.sync_upload(ctl, "selfie", None, rejected)

    assert ctl.state.selfie is None
    assert rejected == {}


def test_edit_button_enabled_before_prompt_commits():
    """The button is only disabled while a call runs; begin() rejects an empty prompt."""
    image = GeneratedImage(b"look")
    state = FittingRoomState(generated=image, edit_prompt="")
    assert app.edit_button_disabled(state) is False

    state.run_state = Running(Operation.EDIT)
    assert app.edit_button_disabled(state) is True


def test_controller_and_client_are_per_session(monkeypatch):
    """Each browser session gets its own client and HTTP session."""
    settings = Settings(api_key="k", api_key_source="Env")
    first, second = {}, {}

    monkeypatch.setattr(app.st, "session_state", first)
    a = app.get_controller(settings)
    assert app.get_controller(settings) is a

    monkeypatch.setattr(app.st, "session_state", second)
    b = app.get_controller(settings)

    assert a is not b
    assert a.client is not b.client
    assert a.client._session is not b.client._session


def test_result_extension():
    assert app.result_extension("image/jpeg") == "jpg"
    assert app.result_extension("image/unknown") == "png"
