"""
Output variants: everything a code cell can produce.

An output is one of four pydantic models discriminated by ``output_type``
(stream, execute_result, display_data, error). Rich outputs carry an ordered
list of MimeEntry values, one per mime type, so a single result can offer
several alternative representations.

Payload shape depends on the mime family:

- text types hold a list of lines (line endings kept)
- binary types (images other than SVG, PDF) hold raw bytes
- JSON types hold the decoded JSON value
"""

import base64
import json
import struct
import traceback as tb
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


BINARY_MIME_TYPES = {
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/bmp",
    "image/webp",
    "application/pdf",
}

# Order in which IPython rich display methods are tried.
_REPR_METHODS = [
    ("text/html", "_repr_html_"),
    ("text/markdown", "_repr_markdown_"),
    ("application/json", "_repr_json_"),
    ("text/latex", "_repr_latex_"),
    ("image/svg+xml", "_repr_svg_"),
    ("image/png", "_repr_png_"),
    ("image/jpeg", "_repr_jpeg_"),
]


def is_json_mime(mime_type: str) -> bool:
    """True for application/json and application/*+json."""
    return mime_type.startswith("application/") and (
        mime_type == "application/json" or mime_type.endswith("+json")
    )


def mime_kind(mime_type: str) -> str:
    """Classify a mime type as 'json', 'binary' or 'text'."""
    if is_json_mime(mime_type):
        return "json"
    if mime_type in BINARY_MIME_TYPES:
        return "binary"
    if mime_type.startswith("image/") and not mime_type.endswith("+xml"):
        return "binary"
    return "text"


def split_lines(text: str) -> list[str]:
    """Split text into lines, keeping line endings."""
    return text.splitlines(keepends=True)


class MimeEntry(BaseModel):
    """A (mime type, payload) pair inside a rich output."""
    model_config = ConfigDict(extra="forbid")

    mime_type: str = Field(min_length=1)
    # bytes for binary types, list of lines for text, any JSON value for JSON types
    payload: Any

    @model_validator(mode="after")
    def _payload_matches_mime(self) -> "MimeEntry":
        kind = mime_kind(self.mime_type)
        if kind == "binary":
            if not isinstance(self.payload, bytes):
                raise ValueError(f"{self.mime_type} payload must be bytes")
        elif kind == "text":
            if not isinstance(self.payload, list) or not all(
                isinstance(line, str) for line in self.payload
            ):
                raise ValueError(f"{self.mime_type} payload must be a list of lines")
        elif isinstance(self.payload, (bytes, bytearray)):
            raise ValueError(f"{self.mime_type} payload must be JSON, not bytes")
        return self

    @property
    def is_binary(self) -> bool:
        return isinstance(self.payload, bytes)

    @property
    def text(self) -> Optional[str]:
        """The payload as one string, or None for binary payloads."""
        if self.is_binary:
            return None
        if mime_kind(self.mime_type) == "text":
            return "".join(self.payload)
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload, indent=2)


class _MimeBundle(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data: list[MimeEntry] = Field(default_factory=list)
    # keyed by mime type, e.g. {"image/png": {"width": 64, "height": 32}}
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _unique_mime_types(self):
        seen = set()
        for entry in self.data:
            if entry.mime_type in seen:
                raise ValueError(f"duplicate mime type {entry.mime_type!r}")
            seen.add(entry.mime_type)
        return self

    @property
    def mime_types(self) -> list[str]:
        return [entry.mime_type for entry in self.data]

    def get(self, mime_type: str) -> Optional[MimeEntry]:
        """Return the entry for a mime type, if present."""
        for entry in self.data:
            if entry.mime_type == mime_type:
                return entry
        return None


class StreamOutput(BaseModel):
    """Text written to stdout or stderr."""
    model_config = ConfigDict(extra="forbid")

    output_type: Literal["stream"] = "stream"
    name: Literal["stdout", "stderr"] = "stdout"
    text: list[str] = Field(default_factory=list)

    @property
    def content(self) -> str:
        return "".join(self.text)


class ExecuteResultOutput(_MimeBundle):
    """The value of a cell's final expression."""
    output_type: Literal["execute_result"] = "execute_result"
    execution_count: Optional[int] = None


class DisplayDataOutput(_MimeBundle):
    """Rich data published explicitly while a cell runs."""
    output_type: Literal["display_data"] = "display_data"


class ErrorOutput(BaseModel):
    """An exception raised by cell code."""
    model_config = ConfigDict(extra="forbid")

    output_type: Literal["error"] = "error"
    ename: str
    evalue: str = ""
    traceback: list[str] = Field(default_factory=list)


Output = Annotated[
    Union[StreamOutput, ExecuteResultOutput, DisplayDataOutput, ErrorOutput],
    Field(discriminator="output_type"),
]

OUTPUT_TYPES = (StreamOutput, ExecuteResultOutput, DisplayDataOutput, ErrorOutput)


def mime_entry(mime_type: str, value: Any) -> MimeEntry:
    """
    Normalise a raw mime value into a MimeEntry.

    Accepts what producers and nbformat files hand us: a string or list of
    strings for text, bytes or a base64 string for binary types, any JSON
    value for JSON types. A list of strings is kept as given.

    Raises:
        ValueError: If a binary value is not valid base64
    """
    kind = mime_kind(mime_type)

    if kind == "binary":
        if isinstance(value, (bytes, bytearray)):
            return MimeEntry(mime_type=mime_type, payload=bytes(value))
        if isinstance(value, list):
            value = "".join(value)
        if not isinstance(value, str):
            raise ValueError(f"{mime_type} value must be bytes or base64 text")
        return MimeEntry(mime_type=mime_type, payload=base64.b64decode(value))

    if kind == "json":
        if isinstance(value, (bytes, bytearray)):
            value = json.loads(bytes(value).decode("utf-8"))
        return MimeEntry(mime_type=mime_type, payload=value)

    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return MimeEntry(mime_type=mime_type, payload=list(value))
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode("utf-8", errors="replace")
    elif not isinstance(value, str):
        value = str(value)
    return MimeEntry(mime_type=mime_type, payload=split_lines(value))


def bundle_to_entries(data: dict[str, Any]) -> list[MimeEntry]:
    """Convert a {mime_type: value} bundle into entries, keeping order."""
    return [mime_entry(mime_type, value) for mime_type, value in data.items()]


def entries_to_bundle(entries: list[MimeEntry]) -> dict[str, Any]:
    """Convert entries into a JSON-ready {mime_type: value} bundle."""
    bundle: dict[str, Any] = {}
    for entry in entries:
        if isinstance(entry.payload, bytes):
            bundle[entry.mime_type] = base64.b64encode(entry.payload).decode("ascii")
        elif mime_kind(entry.mime_type) == "text":
            bundle[entry.mime_type] = list(entry.payload)
        else:
            bundle[entry.mime_type] = entry.payload
    return bundle


def output_text(output: Output) -> str:
    """
    Plain-text summary of an output.

    Rich outputs prefer text/markdown, then JSON, then text/html, then
    text/plain. Binary-only outputs summarise as ``<image/png, 1234 bytes>``.
    """
    if isinstance(output, StreamOutput):
        return output.content
    if isinstance(output, ErrorOutput):
        return f"{output.ename}: {output.evalue}"

    for mime_type in ("text/markdown", "application/json", "text/html", "text/plain"):
        entry = output.get(mime_type)
        if entry is not None:
            return entry.text
    for entry in output.data:
        if entry.is_binary:
            return f"<{entry.mime_type}, {len(entry.payload)} bytes>"
        return entry.text
    return ""


def stream(name: str, text: str) -> StreamOutput:
    """Build a stream output from a string."""
    return StreamOutput(name=name, text=split_lines(text))


def error_from_exception(exc: BaseException, skip_frames: int = 0) -> ErrorOutput:
    """Build an error output from an exception, dropping the first skip_frames frames."""
    trace = exc.__traceback__
    for _ in range(skip_frames):
        if trace is None:
            break
        trace = trace.tb_next
    lines = tb.format_exception(type(exc), exc, trace)
    return ErrorOutput(
        ename=type(exc).__name__,
        evalue=str(exc),
        traceback=[line.rstrip("\n") for line in lines],
    )


def _image_size(data: bytes) -> Optional[tuple[int, int]]:
    if data.startswith(b"\x89PNG\r\n\x1a\n") and len(data) >= 24:
        return struct.unpack(">II", data[16:24])
    if data[:6] in (b"GIF87a", b"GIF89a") and len(data) >= 10:
        return struct.unpack("<HH", data[6:10])
    return None


def _sniff_image(data: bytes) -> Optional[str]:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return None


def image_output(data: bytes, mime_type: Optional[str] = None) -> DisplayDataOutput:
    """Build a display output for raw image bytes, with width/height when known."""
    mime_type = mime_type or _sniff_image(data) or "image/png"
    metadata = {}
    size = _image_size(data)
    if size is not None:
        metadata[mime_type] = {"width": size[0], "height": size[1]}
    return DisplayDataOutput(
        data=[MimeEntry(mime_type=mime_type, payload=data)],
        metadata=metadata,
    )


def build_mime_bundle(obj: Any) -> tuple[dict[str, Any], dict[str, dict[str, Any]]]:
    """
    Build a MIME bundle from an object.

    Tries IPython rich display methods in turn. A ``_repr_*_`` method may return
    either the value or a ``(value, metadata)`` pair. For display objects that
    have a primary text representation (e.g. HTML.data), that text is used as
    the text/plain fallback instead of repr().

    Returns:
        (data, metadata) where data maps mime types to values
    """
    rich_text = None
    rich_entries = []
    metadata: dict[str, dict[str, Any]] = {}

    for mime_type, method_name in _REPR_METHODS:
        method = getattr(obj, method_name, None)
        if not callable(method):
            continue
        value = method()
        if value is None:
            continue
        if isinstance(value, tuple) and len(value) == 2:
            value, md = value
            if md:
                metadata[mime_type] = dict(md)
        rich_entries.append((mime_type, value))
        if rich_text is None and isinstance(value, str) and mime_kind(mime_type) == "text":
            rich_text = value

    plain = rich_text if rich_text is not None else repr(obj)
    data: dict[str, Any] = {"text/plain": plain}
    for mime_type, value in rich_entries:
        data[mime_type] = value

    return data, metadata


def output_from_object(obj: Any) -> Optional[Output]:
    """
    Convert a value produced by running code into an output variant.

    The mapping is:

    - an output variant is returned unchanged
    - None is dropped (returns None)
    - exceptions become ErrorOutput
    - strings become text/plain display data
    - PNG, JPEG and GIF bytes become image display data
    - anything else becomes a mime bundle from its rich display methods,
      falling back to a text/plain repr()

    Nothing except None is discarded.
    """
    if obj is None:
        return None
    if isinstance(obj, OUTPUT_TYPES):
        return obj
    if isinstance(obj, BaseException):
        return error_from_exception(obj)
    if isinstance(obj, str):
        return DisplayDataOutput(data=[mime_entry("text/plain", obj)])
    if isinstance(obj, (bytes, bytearray)):
        mime_type = _sniff_image(bytes(obj))
        if mime_type is not None:
            return image_output(bytes(obj), mime_type)
        return DisplayDataOutput(data=[mime_entry("text/plain", repr(obj))])

    data, metadata = build_mime_bundle(obj)
    return DisplayDataOutput(data=bundle_to_entries(data), metadata=metadata)
