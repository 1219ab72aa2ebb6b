"""
Wire models for the native helper JSON-RPC protocol.

Messages are newline-delimited JSON over the helper's stdio:

    Request:  {"id": "<uuid>", "method": "<name>", "params": {...}}
    Response: {"id": "<uuid>", "result": {...}}
              {"id": "<uuid>", "error": {"message": "...", "code": ..., "data": ...}}
    Event:    {"type": "keyDown" | "keyUp" | "flagsChanged", "payload": {...}}
"""

import logging
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class HelperMethod(str, Enum):
    """RPC methods understood by the native helper."""

    GET_ACCESSIBILITY_TREE_DETAILS = "getAccessibilityTreeDetails"
    GET_ACCESSIBILITY_CONTEXT = "getAccessibilityContext"
    GET_ACCESSIBILITY_STATUS = "getAccessibilityStatus"
    REQUEST_ACCESSIBILITY_PERMISSION = "requestAccessibilityPermission"
    PASTE_TEXT = "pasteText"
    MUTE_SYSTEM_AUDIO = "muteSystemAudio"
    RESTORE_SYSTEM_AUDIO = "restoreSystemAudio"
    SET_SHORTCUTS = "setShortcuts"


def method_log_level(method: HelperMethod) -> int:
    """Audio routing calls are logged at INFO, everything else at DEBUG."""
    if method in (HelperMethod.MUTE_SYSTEM_AUDIO, HelperMethod.RESTORE_SYSTEM_AUDIO):
        return logging.INFO
    return logging.DEBUG


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RpcRequest(_WireModel):
    id: str
    method: HelperMethod
    params: Optional[Dict[str, Any]] = None


class RpcErrorBody(_WireModel):
    code: Optional[int] = None
    message: str
    data: Any = None


class RpcResponse(_WireModel):
    id: str
    result: Any = None
    error: Optional[RpcErrorBody] = None


class KeyEventPayload(_WireModel):
    key: Optional[str] = None
    code: Optional[str] = None
    alt_key: Optional[bool] = Field(default=None, alias="altKey")
    ctrl_key: Optional[bool] = Field(default=None, alias="ctrlKey")
    shift_key: Optional[bool] = Field(default=None, alias="shiftKey")
    meta_key: Optional[bool] = Field(default=None, alias="metaKey")
    key_code: Optional[int] = Field(default=None, alias="keyCode")
    fn_key_pressed: Optional[bool] = Field(default=None, alias="fnKeyPressed")


class KeyDownEvent(_WireModel):
    type: Literal["keyDown"]
    payload: KeyEventPayload
    timestamp: Optional[str] = None


class KeyUpEvent(_WireModel):
    type: Literal["keyUp"]
    payload: KeyEventPayload
    timestamp: Optional[str] = None


class FlagsChangedEvent(_WireModel):
    type: Literal["flagsChanged"]
    payload: KeyEventPayload
    timestamp: Optional[str] = None


HelperEvent = Annotated[
    Union[KeyDownEvent, KeyUpEvent, FlagsChangedEvent],
    Field(discriminator="type"),
]

helper_event_adapter: TypeAdapter = TypeAdapter(HelperEvent)


class ApplicationInfo(_WireModel):
    name: Optional[str] = None
    bundle_identifier: Optional[str] = Field(default=None, alias="bundleIdentifier")
    version: Optional[str] = None
    pid: Optional[int] = None


class TextSelection(_WireModel):
    selected_text: Optional[str] = Field(default=None, alias="selectedText")
    full_content: Optional[str] = Field(default=None, alias="fullContent")
    pre_selection_text: Optional[str] = Field(default=None, alias="preSelectionText")
    post_selection_text: Optional[str] = Field(default=None, alias="postSelectionText")
    is_editable: bool = Field(default=False, alias="isEditable")
    is_secure: bool = Field(default=False, alias="isSecure")
    is_placeholder: bool = Field(default=False, alias="isPlaceholder")
    extraction_method: Optional[str] = Field(default=None, alias="extractionMethod")


class FocusedElement(_WireModel):
    role: Optional[str] = None
    subrole: Optional[str] = None
    title: Optional[str] = None
    is_editable: bool = Field(default=False, alias="isEditable")


class ExtractionMetrics(_WireModel):
    total_time_ms: Optional[float] = Field(default=None, alias="totalTimeMs")
    errors: List[str] = Field(default_factory=list)
    timed_out: bool = Field(default=False, alias="timedOut")


class AccessibilityContext(_WireModel):
    """Snapshot of the focused application and text field."""

    schema_version: Optional[str] = Field(default=None, alias="schemaVersion")
    application: Optional[ApplicationInfo] = None
    focused_element: Optional[FocusedElement] = Field(
        default=None, alias="focusedElement"
    )
    text_selection: Optional[TextSelection] = Field(default=None, alias="textSelection")
    timestamp: Optional[float] = None
    metrics: Optional[ExtractionMetrics] = None


class AccessibilityContextResult(_WireModel):
    context: Optional[AccessibilityContext] = None


class AccessibilityStatus(_WireModel):
    has_permission: bool = Field(alias="hasPermission")
    is_enabled: bool = Field(default=False, alias="isEnabled")


class PermissionRequestResult(_WireModel):
    granted: bool


class SuccessResult(_WireModel):
    success: bool
    message: Optional[str] = None
