"""
Tests for nbformat v4 encoding and decoding.
"""

import base64
import json
import logging

import pytest

from stepnb import codec
from stepnb.errors import MalformedDocument
from stepnb.notebook import Cell, CellType, Notebook
from stepnb.outputs import (
    DisplayDataOutput,
    ErrorOutput,
    ExecuteResultOutput,
    MimeEntry,
    StreamOutput,
    bundle_to_entries,
    stream,
)

SCENARIO = {
    "nbformat": 4,
    "nbformat_minor": 2,
    "cells": [
        {"cell_type": "code", "execution_count": 1, "source": ["x=1"], "outputs": []},
    ],
}


def _rich_notebook() -> Notebook:
    nb = Notebook.new(nbformat_minor=5)
    nb.metadata = {"kernelspec": {"name": "python3", "display_name": "Python 3"}}
    nb.cells = [
        Cell.from_text("# Title\nSome text", type=CellType.MARKDOWN, id="md-1"),
        Cell.from_text(
            "print(1)\n1 + 1",
            id="code-1",
            execution_count=3,
            metadata={"tags": ["demo"]},
            outputs=[
                stream("stdout", "1\n"),
                ExecuteResultOutput(
                    execution_count=3,
                    data=bundle_to_entries({"text/plain": "2", "text/html": "<b>2</b>"}),
                ),
                DisplayDataOutput(
                    data=[
                        MimeEntry(mime_type="image/png", payload=b"\x89PNG\x00\xff"),
                        MimeEntry(mime_type="application/json", payload={"k": [1, None]}),
                    ],
                    metadata={"image/png": {"width": 1}},
                ),
                ErrorOutput(ename="E", evalue="v", traceback=["line 1", "E: v"]),
            ],
        ),
        Cell.from_text("raw text", type=CellType.RAW, id="raw-1"),
    ]
    return nb


class TestDecode:
    """Decoding nbformat documents."""

    def test_example_document(self):
        nb = codec.decode(SCENARIO)

        assert len(nb.cells) == 1
        cell = nb.cells[0]
        assert cell.type == CellType.CODE
        assert cell.execution_count == 1
        assert cell.outputs == []
        assert cell.source == ["x=1"]

    def test_example_document_reencodes(self):
        text = codec.dumps(codec.decode(json.dumps(SCENARIO)))
        expected = {
            "cells": [{
                "cell_type": "code",
                "metadata": {},
                "execution_count": 1,
                "outputs": [],
                "source": ["x=1"],
            }],
            "metadata": {},
            "nbformat": 4,
            "nbformat_minor": 2,
        }
        assert json.loads(text) == expected
        assert text.endswith("\n")

    def test_source_as_string(self):
        data = {"nbformat": 4, "nbformat_minor": 4, "cells": [
            {"cell_type": "markdown", "metadata": {}, "source": "a\nb"},
        ]}
        assert codec.decode(data).cells[0].source == ["a\n", "b"]

    def test_stream_text_as_string(self):
        data = {"nbformat": 4, "nbformat_minor": 4, "cells": [{
            "cell_type": "code", "execution_count": None, "source": [],
            "outputs": [{"output_type": "stream", "name": "stdout", "text": "x\ny\n"}],
        }]}
        out = codec.decode(data).cells[0].outputs[0]
        assert isinstance(out, StreamOutput)
        assert out.text == ["x\n", "y\n"]

    def test_binary_payload_is_bytes(self):
        raw = b"\x89PNG\r\n\x1a\nabc"
        data = {"nbformat": 4, "nbformat_minor": 4, "cells": [{
            "cell_type": "code", "execution_count": 1, "source": [],
            "outputs": [{
                "output_type": "display_data",
                "data": {"image/png": base64.b64encode(raw).decode()},
                "metadata": {},
            }],
        }]}
        entry = codec.decode(data).cells[0].outputs[0].data[0]
        assert entry.payload == raw

    def test_bytes_input(self):
        nb = codec.loads(json.dumps(SCENARIO).encode("utf-8"))
        assert nb.cells[0].execution_count == 1

    def test_cell_id_kept(self):
        data = {"nbformat": 4, "nbformat_minor": 5, "cells": [
            {"cell_type": "raw", "id": "abc", "metadata": {}, "source": []},
        ]}
        assert codec.decode(data).cells[0].id == "abc"


class TestDecodeErrors:
    """Malformed documents."""

    @pytest.mark.parametrize("data", [
        "not json",
        "[]",
        {"nbformat_minor": 2, "cells": []},
        {"nbformat": 3, "nbformat_minor": 0, "cells": []},
        {"nbformat": "4", "nbformat_minor": 2, "cells": []},
        {"nbformat": 4, "nbformat_minor": 2},
        {"nbformat": 4, "nbformat_minor": 2, "cells": {}},
        {"nbformat": 4, "nbformat_minor": "x", "cells": []},
    ])
    def test_document_level_errors_raise(self, data):
        with pytest.raises(MalformedDocument):
            codec.decode(data)

    def test_bad_cell_skipped(self, caplog):
        data = {"nbformat": 4, "nbformat_minor": 2, "cells": [
            {"cell_type": "code", "source": "ok", "outputs": []},
            {"cell_type": "bogus", "source": "bad"},
            {"source": "no type"},
            "not a cell",
            {"cell_type": "markdown", "source": "fine"},
        ]}
        with caplog.at_level(logging.WARNING, logger="stepnb.codec"):
            nb, issues = codec.decode_with_issues(data)

        assert [c.text for c in nb.cells] == ["ok", "fine"]
        assert len(issues) == 3
        assert issues[0].path == "cells/1"
        assert "Skipping malformed cell" in caplog.text

    def test_bad_output_dropped(self):
        data = {"nbformat": 4, "nbformat_minor": 2, "cells": [{
            "cell_type": "code", "execution_count": 1, "source": "x",
            "outputs": [
                {"output_type": "stream", "name": "stdout", "text": "kept"},
                {"output_type": "mystery"},
                {"name": "stdout", "text": "no type"},
                {"output_type": "stream", "name": "stdlog", "text": "bad name"},
                {"output_type": "display_data", "data": {"image/png": 42}, "metadata": {}},
            ],
        }]}
        nb, issues = codec.decode_with_issues(data)

        assert len(nb.cells) == 1
        assert [o.content for o in nb.cells[0].outputs] == ["kept"]
        assert len(issues) == 4
        assert issues[0].path == "cells/0/outputs/1"

    def test_raw_cell_with_outputs_is_not_read_as_outputs(self):
        data = {"nbformat": 4, "nbformat_minor": 2, "cells": [
            {"cell_type": "raw", "source": "r", "outputs": [{"output_type": "stream"}]},
        ]}
        nb = codec.decode(data)
        assert nb.cells[0].outputs == []

    def test_load_reports_path(self, tmp_path):
        path = tmp_path / "broken.ipynb"
        path.write_text("{", encoding="utf-8")
        with pytest.raises(MalformedDocument, match="broken.ipynb"):
            codec.load(path)


class TestEncode:
    """Encoding to nbformat."""

    def test_round_trip(self):
        nb = _rich_notebook()
        assert codec.decode(codec.encode(nb)) == nb
        assert codec.loads(codec.dumps(nb)) == nb

    def test_mime_order_kept_in_text(self):
        text = codec.dumps(_rich_notebook())
        assert text.index('"text/plain"') < text.index('"text/html"')
        assert text.index('"image/png"') < text.index('"application/json"')

    def test_binary_written_as_base64(self):
        data = codec.encode(_rich_notebook())
        bundle = data["cells"][1]["outputs"][2]["data"]
        assert base64.b64decode(bundle["image/png"]) == b"\x89PNG\x00\xff"

    def test_source_always_list(self):
        data = codec.encode(_rich_notebook())
        assert data["cells"][0]["source"] == ["# Title\n", "Some text"]

    def test_non_code_cells_have_no_execution_fields(self):
        data = codec.encode(_rich_notebook())
        for cell in (data["cells"][0], data["cells"][2]):
            assert "outputs" not in cell
            assert "execution_count" not in cell

    def test_id_only_when_present(self):
        nb = Notebook.new()
        nb.cells = [Cell.from_text("a", id="x1"), Cell.from_text("b")]
        data = codec.encode(nb)
        assert data["cells"][0]["id"] == "x1"
        assert "id" not in data["cells"][1]

    def test_non_ascii_written_verbatim(self):
        nb = Notebook.new()
        nb.cells = [Cell.from_text("print('héllo')")]
        assert "héllo" in codec.dumps(nb)

    def test_indent_from_settings(self, monkeypatch):
        monkeypatch.setenv("STEPNB_INDENT", "4")
        text = codec.dumps(Notebook.new())
        assert '\n    "metadata"' in text


class TestSchemaValidation:
    """nbformat schema checks."""

    def test_encoded_notebook_is_valid(self):
        codec.validate_schema(_rich_notebook())

    def test_invalid_document_rejected(self):
        data = codec.encode(_rich_notebook())
        data["cells"][1]["outputs"][0]["name"] = 42
        with pytest.raises(MalformedDocument):
            codec.validate_schema(data)

    def test_save_with_validation(self, tmp_path):
        path = tmp_path / "sub" / "nb.ipynb"
        codec.save(_rich_notebook(), path, validate=True)
        assert codec.load(path) == _rich_notebook()

    def test_save_validates_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STEPNB_VALIDATE", "1")
        nb = _rich_notebook()
        nb.metadata = {"kernelspec": {"name": "python3"}}
        with pytest.raises(MalformedDocument):
            codec.save(nb, tmp_path / "nb.ipynb")
        assert not (tmp_path / "nb.ipynb").exists()
