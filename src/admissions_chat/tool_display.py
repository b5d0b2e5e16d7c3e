from __future__ import annotations

import functools
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger

ArgsFormatter = Callable[[Any], str]

_GENERIC_TOOL_TYPES = {"tool-call", "tool-result"}
_RESULT_STATES = {"output-available", "output-error"}
_ARGS_UNAVAILABLE = "Arguments not available"
_FREE_TEXT_PREVIEW_CHARS = 100


@dataclass(frozen=True)
class ToolDisplay:
    tool_name: str | None
    call_label: str
    call_icon: str
    result_label: str
    result_icon: str
    format_args: ArgsFormatter | None = None

    @property
    def is_default(self) -> bool:
        return self.tool_name is None


@dataclass(frozen=True)
class ToolPartView:
    icon: str
    label: str
    arguments: str
    is_result: bool


def _never_raises(formatter: ArgsFormatter) -> ArgsFormatter:
    @functools.wraps(formatter)
    def wrapper(tool_input: Any) -> str:
        try:
            return formatter(tool_input)
        except Exception as ex:
            logger.debug(f"{formatter.__name__} failed on {type(tool_input).__name__} input: {ex}")
            return ""

    return wrapper


@_never_raises
def format_web_search_args(tool_input: Any) -> str:
    if not isinstance(tool_input, Mapping):
        return ""
    query = tool_input.get("query")
    return str(query) if query else ""


@_never_raises
def format_class_lecture_args(tool_input: Any) -> str:
    if not isinstance(tool_input, Mapping):
        return ""
    class_no = tool_input.get("class_no")
    return f"Class {class_no}" if class_no else ""


_TOOL_DISPLAYS: dict[str, ToolDisplay] = {
    display.tool_name: display
    for display in (
        ToolDisplay(
            tool_name="readNotebookLecture",
            call_label="Reading lecture notebook",
            call_icon="book",
            result_label="Read lecture notebook",
            result_icon="book",
            format_args=format_class_lecture_args,
        ),
        ToolDisplay(
            tool_name="readSlideLecture",
            call_label="Reading slide lecture",
            call_icon="presentation",
            result_label="Read slide lecture",
            result_icon="presentation",
            format_args=format_class_lecture_args,
        ),
        ToolDisplay(
            tool_name="readSyllabus",
            call_label="Reading syllabus",
            call_icon="book",
            result_label="Read syllabus",
            result_icon="book",
        ),
        ToolDisplay(
            tool_name="readAssignment",
            call_label="Reading assignment",
            call_icon="book",
            result_label="Read assignment",
            result_icon="book",
        ),
        ToolDisplay(
            tool_name="webSearch",
            call_label="Searching the web",
            call_icon="search",
            result_label="Searched the web",
            result_icon="search",
            format_args=format_web_search_args,
        ),
    )
}

DEFAULT_TOOL_DISPLAY = ToolDisplay(
    tool_name=None,
    call_label="Searching",
    call_icon="globe",
    result_label="Searched",
    result_icon="globe",
)


def known_tool_names() -> list[str]:
    return sorted(_TOOL_DISPLAYS)


def resolve(tool_name: str | None) -> ToolDisplay:
    display = _TOOL_DISPLAYS.get(tool_name, DEFAULT_TOOL_DISPLAY) if tool_name else DEFAULT_TOOL_DISPLAY
    logger.debug(f"Tool display for {tool_name!r}: {display.call_label!r}")
    return display


def extract_tool_name(part: Mapping[str, Any]) -> str | None:
    part_type = part.get("type")
    if isinstance(part_type, str) and part_type.startswith("tool-") and part_type not in _GENERIC_TOOL_TYPES:
        suffix = part_type[len("tool-"):]
        if suffix:
            return suffix
    tool_name = part.get("toolName")
    if isinstance(tool_name, str) and tool_name:
        return tool_name
    return None


def is_tool_part(part: Mapping[str, Any]) -> bool:
    part_type = part.get("type")
    return isinstance(part_type, str) and part_type.startswith("tool-")


def is_tool_result(part: Mapping[str, Any]) -> bool:
    if part.get("type") == "tool-result":
        return True
    return part.get("state") in _RESULT_STATES or "output" in part


def format_tool_arguments(tool_name: str | None, tool_input: Any, display: ToolDisplay | None = None) -> str:
    if display is not None and display.format_args is not None:
        return display.format_args(tool_input)

    if tool_input is None:
        return _ARGS_UNAVAILABLE
    if not isinstance(tool_input, Mapping):
        return str(tool_input)
    if tool_input.get("query"):
        return str(tool_input["query"])
    if tool_input.get("hypothetical_document"):
        return str(tool_input["hypothetical_document"])[:_FREE_TEXT_PREVIEW_CHARS]
    return _ARGS_UNAVAILABLE


def describe_tool_part(part: Mapping[str, Any]) -> ToolPartView:
    tool_name = extract_tool_name(part)
    display = resolve(tool_name)

    if is_tool_result(part):
        arguments = ""
        if "input" in part:
            arguments = format_tool_arguments(tool_name, part["input"], display)
        icon, label, is_result = display.result_icon, display.result_label, True
    else:
        arguments = format_tool_arguments(tool_name, part.get("input"), display)
        icon, label, is_result = display.call_icon, display.call_label, False

    # Only tool-specific formatters produce text worth showing next to the label.
    if display.format_args is None:
        arguments = ""
    return ToolPartView(icon=icon, label=label, arguments=arguments, is_result=is_result)
