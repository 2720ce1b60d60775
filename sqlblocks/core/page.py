"""HTML page adapter for example blocks.

The adapter scans a documentation page once, recording where each example
block lives in the source along with the offsets the controller later needs:
the placeholder (``.result``) element, the end of the block's ``<pre>`` where
output is appended, and the block's closing tag where the trigger goes.

Each :class:`BlockRegion` doubles as the block's presentation surface. The
controller flips surface flags; :meth:`HtmlPage.render` re-serialises the
page from the parsed markup plus those flags, so the source itself is
never mutated.
"""

from __future__ import annotations

import html
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from html.parser import HTMLParser
from pathlib import Path

from sqlblocks.core.models import PageMarkers

VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "source",
        "track",
        "wbr",
    }
)

LINE_BREAK = "<br>"
LOADING_MARKUP = "<code>\n...</code>"


class PageMarkupError(ValueError):
    """Raised when a page's example blocks cannot be interpreted."""


def format_table_markup(lines: Sequence[str]) -> str:
    """Wrap rendered table lines in a ``<code>`` element, one line break per line."""

    body = "".join(html.escape(line, quote=False) + LINE_BREAK for line in lines)
    return f"<code>{LINE_BREAK}{body}</code>"


@dataclass(slots=True)
class BlockRegion:
    """Location of an example block in the page source plus its surface state.

    Offsets in ``placeholder_span``, ``output_anchor`` and ``close_offset``
    are relative to ``markup``.
    """

    index: int
    classes: frozenset[str]
    start: int
    end: int
    markup: str
    close_offset: int
    output_anchor: int
    query_text: str | None = None
    placeholder: str | None = None
    placeholder_span: tuple[int, int] | None = None
    placeholder_visible: bool = True
    trigger_installed: bool = False
    loading: bool = False
    outputs: list[str] = field(default_factory=list)

    def has_class(self, css_class: str) -> bool:
        return css_class in self.classes

    def remove_placeholder(self) -> None:
        self.placeholder_visible = False

    def install_trigger(self) -> None:
        self.trigger_installed = True

    def remove_trigger(self) -> None:
        self.trigger_installed = False

    def show_loading(self) -> None:
        self.loading = True

    def hide_loading(self) -> None:
        self.loading = False

    def append_table(self, lines: Sequence[str]) -> None:
        self.outputs.append(format_table_markup(lines))

    def reveal_payload(self, payload: str, spacing_lines: int) -> None:
        self.outputs.append(LINE_BREAK * spacing_lines + payload)

    def to_html(self, trigger_markup: str | None = None) -> str:
        # (start, end, replacement, tie-break) edits applied left to right.
        edits: list[tuple[int, int, str, int]] = []
        if not self.placeholder_visible and self.placeholder_span is not None:
            span_start, span_end = self.placeholder_span
            edits.append((span_start, span_end, "", 0))
        anchored = "".join(self.outputs) + (LOADING_MARKUP if self.loading else "")
        if anchored:
            edits.append((self.output_anchor, self.output_anchor, anchored, 1))
        if trigger_markup:
            edits.append((self.close_offset, self.close_offset, trigger_markup, 2))

        pieces: list[str] = []
        position = 0
        for start, end, replacement, _ in sorted(edits, key=lambda edit: (edit[0], edit[3])):
            pieces.append(self.markup[position:start])
            pieces.append(replacement)
            position = max(position, end)
        pieces.append(self.markup[position:])
        return "".join(pieces)


@dataclass(slots=True)
class _PendingBlock:
    start: int
    depth: int
    classes: frozenset[str]
    query_depth: int | None = None
    query_parts: list[str] | None = None
    result_start: int | None = None
    result_end: int | None = None
    result_depth: int | None = None
    anchor: int | None = None


class _BlockScanner(HTMLParser):
    def __init__(self, source: str, markers: PageMarkers) -> None:
        super().__init__(convert_charrefs=True)
        self._source = source
        self._markers = markers
        self._line_starts = [0] + [idx + 1 for idx, char in enumerate(source) if char == "\n"]
        self._stack: list[str] = []
        self._block: _PendingBlock | None = None
        self.regions: list[BlockRegion] = []

    @property
    def pending(self) -> bool:
        return self._block is not None

    def _offset(self) -> int:
        line, column = self.getpos()
        return self._line_starts[line - 1] + column

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in VOID_ELEMENTS:
            return
        classes = frozenset((dict(attrs).get("class") or "").split())
        start = self._offset()
        self._stack.append(tag)
        depth = len(self._stack)

        block = self._block
        if block is None:
            if tag == "div" and (
                self._markers.live_class in classes or self._markers.canned_class in classes
            ):
                self._block = _PendingBlock(start=start, depth=depth, classes=classes)
            return

        if block.query_parts is None and self._markers.query_class in classes:
            block.query_depth = depth
            block.query_parts = []
        if block.result_start is None and self._markers.result_class in classes:
            block.result_start = start
            block.result_depth = depth

    def handle_data(self, data: str) -> None:
        block = self._block
        if block is not None and block.query_depth is not None and block.query_parts is not None:
            block.query_parts.append(data)

    def handle_endtag(self, tag: str) -> None:
        if tag in VOID_ELEMENTS:
            return
        matches = [idx for idx, open_tag in enumerate(self._stack) if open_tag == tag]
        if not matches:
            return
        closed_depth = matches[-1] + 1
        start = self._offset()
        close = self._source.find(">", start)
        end = len(self._source) if close == -1 else close + 1

        block = self._block
        if block is not None:
            if tag == "pre" and block.anchor is None and block.result_depth is None:
                block.anchor = start
            if block.query_depth is not None and closed_depth <= block.query_depth:
                block.query_depth = None
            if block.result_depth is not None and closed_depth <= block.result_depth:
                block.result_end = end
                block.result_depth = None
            if closed_depth <= block.depth:
                self._finish(block, close_start=start, end=end)
                self._block = None

        del self._stack[closed_depth - 1 :]

    def _finish(self, block: _PendingBlock, *, close_start: int, end: int) -> None:
        origin = block.start
        placeholder = None
        span = None
        if block.result_start is not None and block.result_end is not None:
            placeholder = self._source[block.result_start : block.result_end]
            span = (block.result_start - origin, block.result_end - origin)
        anchor = block.anchor if block.anchor is not None else close_start
        query_text = "".join(block.query_parts) if block.query_parts is not None else None
        self.regions.append(
            BlockRegion(
                index=len(self.regions),
                classes=block.classes,
                start=origin,
                end=end,
                markup=self._source[origin:end],
                close_offset=close_start - origin,
                output_anchor=anchor - origin,
                query_text=query_text,
                placeholder=placeholder,
                placeholder_span=span,
            )
        )


TriggerAction = Callable[[int], str]


@dataclass
class HtmlPage:
    """A parsed documentation page and the surfaces of its example blocks."""

    source: str
    markers: PageMarkers
    regions: list[BlockRegion]

    @classmethod
    def parse(cls, source: str, markers: PageMarkers | None = None) -> HtmlPage:
        resolved = markers or PageMarkers()
        scanner = _BlockScanner(source, resolved)
        scanner.feed(source)
        scanner.close()
        if scanner.pending:
            raise PageMarkupError("Example block is missing its closing </div>")
        return cls(source=source, markers=resolved, regions=scanner.regions)

    @classmethod
    def from_path(cls, path: str | Path, markers: PageMarkers | None = None) -> HtmlPage:
        page_path = Path(path).expanduser()
        if not page_path.exists():
            raise FileNotFoundError(f"Page not found: {page_path}")
        return cls.parse(page_path.read_text(encoding="utf-8"), markers)

    def find_blocks(self, css_class: str) -> list[BlockRegion]:
        """Return block regions carrying *css_class*, in document order."""

        return [region for region in self.regions if region.has_class(css_class)]

    def region(self, index: int) -> BlockRegion:
        try:
            return self.regions[index]
        except IndexError:
            raise KeyError(index) from None

    def render(self, trigger_action: TriggerAction | None = None) -> str:
        """Serialise the page with every block's current surface state applied."""

        pieces: list[str] = []
        position = 0
        for region in self.regions:
            pieces.append(self.source[position : region.start])
            trigger = self._trigger_markup(region.index, trigger_action) if region.trigger_installed else None
            pieces.append(region.to_html(trigger))
            position = region.end
        pieces.append(self.source[position:])
        return "".join(pieces)

    def _trigger_markup(self, index: int, trigger_action: TriggerAction | None) -> str:
        label = html.escape(self.markers.trigger_label)
        if trigger_action is None:
            return f'<button type="button" data-block="{index}">{label}</button>'
        action = html.escape(trigger_action(index))
        return (
            f'<form method="post" action="{action}" class="sqlblocks-trigger">'
            f'<button type="submit">{label}</button></form>'
        )
