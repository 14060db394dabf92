"""
Renderers for cell outputs.

A RendererRegistry maps mime types to functions turning a MimeEntry into a
Rich renderable. Hosts can register their own renderers; unknown mime types
fall back to the registry's default renderer, which renders nothing.
"""

from typing import Callable, Optional

from rich.console import Group, RenderableType
from rich.markdown import Markdown
from rich.syntax import Syntax
from rich.text import Text

from stepnb.notebook import Cell
from stepnb.outputs import (
    OUTPUT_TYPES,
    ErrorOutput,
    MimeEntry,
    StreamOutput,
    output_text,
)

Renderer = Callable[[MimeEntry], Optional[RenderableType]]

# Richest first.
PREFERRED_MIME_TYPES = [
    "text/markdown",
    "application/json",
    "text/html",
    "text/latex",
    "image/svg+xml",
    "image/png",
    "image/jpeg",
    "image/gif",
    "text/plain",
]


def render_nothing(entry: MimeEntry) -> Optional[RenderableType]:
    return None


class RendererRegistry:
    """Capability lookup from mime type to renderer."""

    def __init__(self, default: Renderer = render_nothing):
        self._renderers: dict[str, Renderer] = {}
        self.default = default

    def register(self, mime_type: str, renderer: Renderer):
        self._renderers[mime_type] = renderer

    def unregister(self, mime_type: str):
        self._renderers.pop(mime_type, None)

    def get(self, mime_type: str) -> Renderer:
        """Return the renderer for a mime type, or the default one."""
        return self._renderers.get(mime_type, self.default)

    def __contains__(self, mime_type: str) -> bool:
        return mime_type in self._renderers

    @property
    def mime_types(self) -> list[str]:
        return list(self._renderers)


def _render_markdown(entry: MimeEntry) -> RenderableType:
    return Markdown(entry.text)


def _render_json(entry: MimeEntry) -> RenderableType:
    return Syntax(entry.text, "json", theme="monokai", line_numbers=False)


def _render_html(entry: MimeEntry) -> RenderableType:
    return Text(entry.text, style="cyan")


def _render_plain(entry: MimeEntry) -> RenderableType:
    return Text(entry.text.rstrip("\n"))


def _render_image(entry: MimeEntry) -> RenderableType:
    if entry.is_binary:
        return Text(f"<{entry.mime_type}, {len(entry.payload)} bytes>", style="dim")
    return Text(f"<{entry.mime_type}>", style="dim")


def default_registry() -> RendererRegistry:
    """Registry with the built-in text, JSON and image placeholder renderers."""
    registry = RendererRegistry()
    registry.register("text/markdown", _render_markdown)
    registry.register("application/json", _render_json)
    registry.register("text/html", _render_html)
    registry.register("text/latex", _render_plain)
    registry.register("text/plain", _render_plain)
    for mime_type in ("image/svg+xml", "image/png", "image/jpeg", "image/gif"):
        registry.register(mime_type, _render_image)
    return registry


def _pick_entry(output, registry: RendererRegistry) -> Optional[MimeEntry]:
    for mime_type in PREFERRED_MIME_TYPES:
        entry = output.get(mime_type)
        if entry is not None and mime_type in registry:
            return entry
    for entry in output.data:
        if entry.mime_type in registry:
            return entry
    return output.data[0] if output.data else None


def render_output(output, registry: Optional[RendererRegistry] = None) -> RenderableType:
    """
    Format an output as a Rich renderable.

    Args:
        output: An output variant
        registry: Renderers to use (default_registry() if omitted)

    Returns:
        Rich renderable; an empty Text for outputs nothing can render
    """
    if registry is None:
        registry = default_registry()

    if not isinstance(output, OUTPUT_TYPES):
        return Text("")

    if isinstance(output, StreamOutput):
        text = output.content.rstrip("\n")
        if output.name == "stderr":
            return Text(text, style="yellow")
        return Text(text)

    if isinstance(output, ErrorOutput):
        error_text = Text()
        error_text.append(output.ename, style="bold red")
        error_text.append(f": {output.evalue}", style="red")
        for tb_line in output.traceback:
            error_text.append(f"\n{tb_line}", style="dim red")
        return error_text

    entry = _pick_entry(output, registry)
    if entry is None:
        return Text("")
    rendered = registry.get(entry.mime_type)(entry)
    return rendered if rendered is not None else Text("")


def render_outputs(cell: Cell, registry: Optional[RendererRegistry] = None) -> Group:
    """Render every output of a cell, in order."""
    if registry is None:
        registry = default_registry()
    return Group(*(render_output(output, registry) for output in cell.outputs))


def format_output(output) -> str:
    """Format an output for display as plain text."""
    if not isinstance(output, OUTPUT_TYPES):
        return ""
    return output_text(output)


def get_cell_status(cell: Cell) -> tuple[str, str]:
    """
    Get status indicator and style for a cell.

    Returns:
        Tuple of (indicator_string, rich_style)
    """
    if any(isinstance(output, ErrorOutput) for output in cell.outputs):
        return ("err", "red")
    if cell.outputs or cell.execution_count is not None:
        return ("ok", "green")
    return ("--", "dim")
