#  -*- coding: utf-8 -*-
"""
Rich terminal display of pickled streams.

``disassemble`` replays a stream and lists every value it holds, one row per
opcode, as a ``pandas.DataFrame``. ``StreamListing`` renders that listing
with the Rich library, styled by ``DisplaySettings``.
"""

from __future__ import annotations

import io
import reprlib

import pandas

from abc import ABC, abstractmethod

from rich.markup import escape
from rich.text import Text
from rich.panel import Panel
from rich.console import Console, RenderableType
from rich.table import Table
from rich import box
from rich.align import Align

from typing import Any

from .deserializer import Deserializer
from .descriptors import Op
from .pickler import Pickler
from .settings import Setting, check_types


# ========== ========== ========== ========== ========== ==========
def _parse_box(self, value: str) -> str:
    check_types(value, str)

    if not isinstance(getattr(box, value, None), box.Box):
        raise ValueError(f"Unknown box style '{value}'")

    return value


def _parse_align(self, value: str) -> str:
    if value not in ('left', 'center', 'right'):
        raise ValueError(f"Invalid alignment '{value}', expected left, center or right")

    return value


class DisplaySettings:
    """
    Configuration for terminal display formatting.

    All styling settings use Rich's style syntax, supporting colors,
    attributes (bold, italic), and combinations.

    Attributes
    ----------
    console_width : int
        Maximum console output width in characters. Default 150.
    property_style : str
        Style for labels in forms. Default 'bold bright_yellow'.
    panel_border_style : str
        Style for panel borders. Default 'bright_cyan'.
    panel_box : str
        Box style name from rich.box. Default 'ROUNDED'.
    panel_title_align : str
        Panel title alignment. Default 'center'.
    table_index_style : str or None
        Style for the table index column. Default None.
    table_header_style : str or None
        Style for table headers. Default 'bold bright_yellow'.
    table_spacing : int
        Column spacing in characters. Default 4.
    max_rows : int
        Rows shown before a listing is truncated. Default 41.

    Examples
    --------
    >>> settings = DisplaySettings()
    >>> settings.panel_box = 'DOUBLE'
    >>> settings.console_width = '120'
    >>> settings.console_width
    120
    """

    console_width: int = Setting(default=150, parser=lambda self, value: int(value))

    property_style: str = Setting(default='bold bright_yellow')

    panel_border_style: str = Setting(default='bright_cyan')
    panel_box: str = Setting(default='ROUNDED', parser=_parse_box)
    panel_title_align: str = Setting(default='center', parser=_parse_align)

    table_index_style: str | None = Setting(default=None)
    table_header_style: str | None = Setting(default='bold bright_yellow')
    table_spacing: int = Setting(default=4, parser=lambda self, value: int(value))

    max_rows: int = Setting(default=41, parser=lambda self, value: max(3, int(value)))


class Displayable(ABC):
    """
    Abstract base for objects with Rich terminal display.

    Subclasses define content through ``_title()`` and ``_content()``;
    the panel, styling and rendering are handled here. Integrates with
    Rich's protocol (``__rich__``) and provides string output (``__str__``).
    """

    # ========== ========== ========== ========== ========== class attributes
    display_settings: DisplaySettings = Setting(doc="Display configuration of this object")

    @display_settings.default
    def display_settings(self) -> DisplaySettings:
        return DisplaySettings()

    @display_settings.parser
    def display_settings(self, value: DisplaySettings) -> DisplaySettings:
        check_types(value, DisplaySettings)
        return value

    # ========== ========== ========== ========== ========== special methods
    def __str__(self) -> str:
        """
        Formatted panel with ANSI color codes.

        Width is controlled by ``display_settings.console_width``.
        """
        string_io = io.StringIO()
        console = Console(file=string_io,
                          force_terminal=True,
                          width=self.display_settings.console_width)
        console.print(self._display_panel())
        return string_io.getvalue()

    def __rich__(self) -> RenderableType:
        return self._display_panel()

    # ========== ========== ========== ========== ========== protected methods
    @abstractmethod
    def _title(self) -> Text:
        ...

    @abstractmethod
    def _content(self) -> RenderableType:
        ...

    def _display_panel(self) -> Panel:
        return Panel(
            self._content(),
            title=self._title(),
            border_style=self.display_settings.panel_border_style,
            title_align=self.display_settings.panel_title_align,
            expand=False,
            box=getattr(box, self.display_settings.panel_box)
        )

    # ========== ========== ========== ========== ========== public methods
    def format_as_form(self, data: dict[str, str] | pandas.Series) -> Table:
        """
        Format data as a key-value form.

        Keys get ':' appended and use ``property_style``.
        """
        form = Table.grid(padding=(0, 4), expand=False)
        form.add_column(justify='left', style=self.display_settings.property_style)
        form.add_column(justify='left', style=None)

        for prop, value in data.items():
            form.add_row(f'{prop}:', value)

        return form

    def format_as_table(self, frame: pandas.DataFrame, max_rows: int | None = None) -> Table:
        """
        Format a DataFrame as a Rich table.

        Numeric columns are right aligned, all others left aligned. Frames
        longer than ``max_rows`` show their head and tail around an ellipsis
        row.

        Parameters
        ----------
        frame : pandas.DataFrame
        max_rows : int, optional
            Defaults to ``display_settings.max_rows``.

        Returns
        -------
        Table
        """
        settings = self.display_settings
        max_rows = settings.max_rows if max_rows is None else max_rows

        columns = frame.columns

        table = Table.grid(padding=(0, settings.table_spacing), expand=False)

        for column in columns:
            if pandas.api.types.is_numeric_dtype(frame[column]):
                table.add_column(justify='right')
            else:
                table.add_column(justify='left')

        table.add_row(*(Align(escape(str(col)), 'center') for col in columns), style=settings.table_header_style)

        # ---------- ---------- ---------- ---------- populate table
        _frame = frame.astype(str)

        def add_rows(rows: pandas.DataFrame) -> None:
            for _, row in rows.iterrows():
                first = Text(row.values[0], style=settings.table_index_style or '')
                table.add_row(first, *(Text(value) for value in row.values[1:]))

        if len(_frame) <= max_rows:
            add_rows(_frame)

        else:
            n_rows = (max_rows - 1) // 2
            add_rows(_frame.head(n_rows))
            table.add_row(*(Align.center('...') for _ in columns))
            add_rows(_frame.tail(n_rows))

        return table

    def to_html(self) -> str:
        """Export the display as HTML with inline styles."""
        console = Console(record=True, file=io.StringIO(), width=self.display_settings.console_width)
        console.print(self)
        return console.export_html()


# ========== ========== ========== ========== ========== ==========
_repr = reprlib.Repr()
_repr.maxstring = 40
_repr.maxother = 40

_SIZED = (Op.LIST, Op.DICT, Op.SET, Op.FROZENSET, Op.TUPLE)


def _detail(op: Op, value: Any) -> str:

    if op in _SIZED:
        return f"{type(value).__name__}[{len(value)}]"

    if op in (Op.ARRAY, Op.BOUNDED_ARRAY):
        return f"{value.dtype}{list(value.shape)}"

    if op in (Op.RECORD, Op.REDUCE):
        return type(value).__qualname__

    if op in (Op.GLOBAL, Op.FUNCTION):
        return getattr(value, '__qualname__', None) or _repr.repr(value)

    if op in (Op.UNIT_BUILTINS, Op.UNIT_REF, Op.UNIT_DEF):
        return value.__name__

    if op is Op.CELL:
        return 'cell'

    if op is Op.MEMO:
        return f"-> {type(value).__name__}"

    return _repr.repr(value)


def disassemble(data: bytes, pickler: Pickler | None = None) -> pandas.DataFrame:
    """
    List the values held in a pickled stream.

    The stream is fully read, so units pickled by value are materialized in
    the pickler's context as a side effect.

    Parameters
    ----------
    data : bytes
    pickler : Pickler, optional

    Returns
    -------
    pandas.DataFrame
        One row per value, sorted by offset, with the columns ``offset``,
        ``depth``, ``op`` and ``detail``.
    """
    pickler = Pickler() if pickler is None else pickler
    rows = []

    def trace(offset: int, depth: int, op: Op, value: Any) -> None:
        rows.append((offset, depth, op.name, _detail(op, value)))

    Deserializer(pickler, io.BytesIO(data), trace=trace).run()

    frame = pandas.DataFrame(rows, columns=['offset', 'depth', 'op', 'detail'])
    return frame.sort_values('offset', kind='stable').reset_index(drop=True)


class StreamListing(Displayable):
    """
    Displayable listing of a pickled stream.

    Parameters
    ----------
    data : bytes
        The stream.
    pickler : Pickler, optional
        Pickler used to replay the stream.

    Examples
    --------
    >>> from enredo import dumps
    >>> listing = StreamListing(dumps([1, 'one']))
    >>> list(listing.frame['op'])
    ['LIST', 'INT', 'STR']
    """

    # ========== ========== ========== ========== ========== special methods
    def __init__(self, data: bytes, pickler: Pickler | None = None) -> None:
        check_types(data, (bytes, bytearray))

        self.data: bytes = bytes(data)
        self.frame: pandas.DataFrame = disassemble(self.data, pickler)

    # ========== ========== ========== ========== ========== protected methods
    def _title(self) -> Text:
        return Text("Pickled stream", style='bold')

    def _content(self) -> RenderableType:
        frame = self.frame

        summary = self.format_as_form({
            'Size': f"{len(self.data)} bytes",
            'Values': str(len(frame)),
            'Back-references': str(int((frame['op'] == Op.MEMO.name).sum())),
            'Max depth': str(int(frame['depth'].max())) if len(frame) else '0',
        })

        grid = Table.grid(padding=(1, 0))
        grid.add_row(summary)
        grid.add_row(self.format_as_table(frame))
        return grid


__all__ = [
    'DisplaySettings',
    'Displayable',
    'StreamListing',
    'disassemble',
]
