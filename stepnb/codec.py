"""
Codec: nbformat v4 JSON <-> Notebook.

Decoding is strict at the document level and forgiving below it: a
malformed top-level shape raises MalformedDocument, while a malformed cell is
skipped and a malformed output is dropped, each logged and reported by
decode_with_issues().

Encoding always writes source and text fields as lists of strings and writes
keys in nbformat order without sorting, so mime bundle order survives.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import nbformat
from pydantic import ValidationError

from stepnb.config import load_settings
from stepnb.errors import InvariantViolation, MalformedDocument
from stepnb.notebook import Cell, CellType, Notebook
from stepnb.outputs import (
    DisplayDataOutput,
    ErrorOutput,
    ExecuteResultOutput,
    MimeEntry,
    StreamOutput,
    bundle_to_entries,
    entries_to_bundle,
    split_lines,
)

logger = logging.getLogger(__name__)

SUPPORTED_MAJOR = 4


def _describe(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return f"{loc}: {first['msg']}" if loc else first["msg"]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _read_multiline(value: Any, path: str) -> list[str]:
    """Read an nbformat multiline string: a string or a list of strings."""
    if isinstance(value, str):
        return split_lines(value)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise MalformedDocument("expected a string or a list of strings", path)


def _read_object(value: Any, path: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedDocument("expected an object", path)
    return dict(value)


def _read_bundle(value: Any, path: str) -> list[MimeEntry]:
    bundle = _read_object(value, path)
    try:
        return bundle_to_entries(bundle)
    except ValidationError as exc:
        raise MalformedDocument(_describe(exc), path) from exc
    except ValueError as exc:
        raise MalformedDocument(str(exc), path) from exc


def _decode_output(data: Any, path: str):
    if not isinstance(data, dict):
        raise MalformedDocument("output must be an object", path)

    output_type = data.get("output_type")
    try:
        if output_type == "stream":
            return StreamOutput(
                name=data.get("name"),
                text=_read_multiline(data.get("text", ""), f"{path}/text"),
            )
        elif output_type == "execute_result":
            return ExecuteResultOutput(
                execution_count=data.get("execution_count"),
                data=_read_bundle(data.get("data"), f"{path}/data"),
                metadata=_read_object(data.get("metadata"), f"{path}/metadata"),
            )
        elif output_type == "display_data":
            return DisplayDataOutput(
                data=_read_bundle(data.get("data"), f"{path}/data"),
                metadata=_read_object(data.get("metadata"), f"{path}/metadata"),
            )
        elif output_type == "error":
            return ErrorOutput(
                ename=data.get("ename"),
                evalue=data.get("evalue", ""),
                traceback=data.get("traceback", []),
            )
    except ValidationError as exc:
        raise MalformedDocument(_describe(exc), path) from exc

    if output_type is None:
        raise MalformedDocument("missing output_type", path)
    raise MalformedDocument(f"unknown output_type {output_type!r}", path)


def _decode_cell(data: Any, path: str, issues: list[MalformedDocument]) -> Cell:
    if not isinstance(data, dict):
        raise MalformedDocument("cell must be an object", path)

    raw_type = data.get("cell_type")
    if raw_type is None:
        raise MalformedDocument("missing cell_type", path)
    try:
        cell_type = CellType(raw_type)
    except ValueError:
        raise MalformedDocument(f"unknown cell_type {raw_type!r}", path) from None

    fields: dict[str, Any] = {
        "type": cell_type,
        "source": _read_multiline(data.get("source", ""), f"{path}/source"),
        "metadata": _read_object(data.get("metadata"), f"{path}/metadata"),
    }

    cell_id = data.get("id")
    if cell_id is not None:
        if not isinstance(cell_id, str):
            raise MalformedDocument("id must be a string", f"{path}/id")
        fields["id"] = cell_id

    if cell_type == CellType.CODE:
        count = data.get("execution_count")
        if count is not None and not _is_int(count):
            raise MalformedDocument("execution_count must be an integer or null", path)
        fields["execution_count"] = count

        raw_outputs = data.get("outputs", [])
        if not isinstance(raw_outputs, list):
            raise MalformedDocument("outputs must be a list", f"{path}/outputs")
        outputs = []
        for j, raw in enumerate(raw_outputs):
            try:
                outputs.append(_decode_output(raw, f"{path}/outputs/{j}"))
            except MalformedDocument as exc:
                logger.warning("Dropping malformed output: %s", exc)
                issues.append(exc)
        fields["outputs"] = outputs
    elif "attachments" in data:
        fields["attachments"] = _read_object(data["attachments"], f"{path}/attachments")

    try:
        return Cell(**fields)
    except ValidationError as exc:
        raise MalformedDocument(_describe(exc), path) from exc


def decode_with_issues(
    data: Union[dict, str, bytes],
) -> tuple[Notebook, list[MalformedDocument]]:
    """
    Decode an nbformat v4 document, collecting recovered problems.

    Args:
        data: Parsed JSON dict, or JSON text/bytes

    Returns:
        (notebook, issues) where issues lists every skipped cell and dropped
        output

    Raises:
        MalformedDocument: If the document as a whole is not nbformat v4
    """
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise MalformedDocument(f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedDocument("notebook must be a JSON object")

    major = data.get("nbformat")
    if not _is_int(major):
        raise MalformedDocument("missing or non-integer nbformat")
    if major != SUPPORTED_MAJOR:
        raise MalformedDocument(f"unsupported nbformat {major}, expected {SUPPORTED_MAJOR}")

    minor = data.get("nbformat_minor", 0)
    if not _is_int(minor):
        raise MalformedDocument("nbformat_minor must be an integer")

    metadata = _read_object(data.get("metadata"), "metadata")

    raw_cells = data.get("cells")
    if not isinstance(raw_cells, list):
        raise MalformedDocument("cells must be a list")

    issues: list[MalformedDocument] = []
    cells = []
    for i, raw in enumerate(raw_cells):
        try:
            cells.append(_decode_cell(raw, f"cells/{i}", issues))
        except MalformedDocument as exc:
            logger.warning("Skipping malformed cell: %s", exc)
            issues.append(exc)

    notebook = Notebook(
        nbformat=major,
        nbformat_minor=minor,
        metadata=metadata,
        cells=cells,
    )
    return notebook, issues


def decode(data: Union[dict, str, bytes]) -> Notebook:
    """Decode an nbformat v4 document, skipping malformed cells and outputs."""
    notebook, issues = decode_with_issues(data)
    if issues:
        logger.warning("Recovered from %d malformed item(s) while decoding", len(issues))
    return notebook


def loads(text: Union[str, bytes]) -> Notebook:
    return decode(text)


def load(path: Path) -> Notebook:
    """Load a notebook from an .ipynb file."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    try:
        return decode(text)
    except MalformedDocument as exc:
        raise MalformedDocument(f"{path}: {exc}") from exc


def _encode_output(output) -> dict:
    if isinstance(output, StreamOutput):
        return {
            "output_type": "stream",
            "name": output.name,
            "text": list(output.text),
        }
    elif isinstance(output, ExecuteResultOutput):
        return {
            "output_type": "execute_result",
            "execution_count": output.execution_count,
            "data": entries_to_bundle(output.data),
            "metadata": dict(output.metadata),
        }
    elif isinstance(output, DisplayDataOutput):
        return {
            "output_type": "display_data",
            "data": entries_to_bundle(output.data),
            "metadata": dict(output.metadata),
        }
    elif isinstance(output, ErrorOutput):
        return {
            "output_type": "error",
            "ename": output.ename,
            "evalue": output.evalue,
            "traceback": list(output.traceback),
        }
    raise InvariantViolation(f"unhandled output variant {type(output).__name__}")


def _encode_cell(cell: Cell) -> dict:
    data: dict[str, Any] = {"cell_type": cell.type.value}
    if cell.id is not None:
        data["id"] = cell.id
    data["metadata"] = dict(cell.metadata)

    if cell.type == CellType.CODE:
        data["execution_count"] = cell.execution_count
        data["outputs"] = [_encode_output(output) for output in cell.outputs]
    elif cell.attachments is not None:
        data["attachments"] = cell.attachments

    data["source"] = list(cell.source)
    return data


def encode(notebook: Notebook) -> dict:
    """Convert a notebook to an nbformat v4 dictionary."""
    return {
        "cells": [_encode_cell(cell) for cell in notebook.cells],
        "metadata": dict(notebook.metadata),
        "nbformat": notebook.nbformat,
        "nbformat_minor": notebook.nbformat_minor,
    }


def dumps(notebook: Notebook, indent: Optional[int] = None) -> str:
    """Serialize a notebook to JSON text with a trailing newline."""
    if indent is None:
        indent = load_settings().indent
    return json.dumps(encode(notebook), indent=indent, ensure_ascii=False) + "\n"


def validate_schema(data: Union[Notebook, dict]):
    """
    Check a document against the nbformat v4 JSON schema.

    Raises:
        MalformedDocument: If the document violates the schema
    """
    if isinstance(data, Notebook):
        data = encode(data)
    try:
        nbformat.validate(nbformat.from_dict(data))
    except nbformat.ValidationError as exc:
        message = getattr(exc, "message", None) or str(exc).splitlines()[0]
        raise MalformedDocument(f"schema violation: {message}") from exc


def save(notebook: Notebook, path: Path, validate: Optional[bool] = None):
    """
    Save a notebook to an .ipynb file.

    Args:
        notebook: Notebook to write
        path: Destination path
        validate: Check the nbformat schema first (default from settings)
    """
    settings = load_settings()
    if validate is None:
        validate = settings.validate
    if validate:
        validate_schema(notebook)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        f.write(dumps(notebook, indent=settings.indent))
