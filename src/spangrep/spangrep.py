import os
import re
import sys
import stat
import time
import queue
import threading
from pathlib import Path
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, NamedTuple, Optional, Union
from concurrent.futures import ThreadPoolExecutor

from rich.color import ColorSystem
from rich.console import Console
from rich.markup import escape
from rich.segment import Segment
from rich.style import Style, StyleType
from rich.table import Table


# --- Errors ---
class SpangrepError(Exception):
    """Base class for every fatal error raised during a search run."""


class ConfigurationError(SpangrepError):
    """Missing or invalid pattern, or an otherwise unusable configuration."""


class SourceAccessError(SpangrepError):
    """The named input file or directory cannot be statted, opened or decoded."""


class TraversalError(SourceAccessError):
    """A directory could not be listed while walking a tree."""


class OutputSinkError(SpangrepError):
    """The mirror output file already exists or cannot be created."""


# --- Console Management ---
class ConsoleManager:
    """A wrapper around a stderr 'rich' console used for diagnostics."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True, highlight=False)

    def error(self, message: str):
        self.console.print(f"[bold red]Error:[/bold red] {escape(message)}")

    def warning(self, message: str):
        self.console.print(f"[yellow]Warning:[/yellow] {escape(message)}")

    def print_table(self, title: str, columns: List[str], rows: List[List[str]]):
        """Prints a formatted table to the console."""
        table = Table(
            title=title,
            show_header=True,
            header_style="bold magenta",
            border_style="dim",
        )
        for col in columns:
            table.add_column(col)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)


def make_output_console(color: str = "auto") -> Console:
    """
    Builds the interactive console that matched lines are printed to.

    Args:
        color (str): "auto" styles only when stdout is a terminal, "always"
            forces styling, "never" disables it.

    Returns:
        Console: A stdout console with highlighting disabled.
    """
    if color == "always":
        return Console(force_terminal=True, highlight=False)
    if color == "never":
        return Console(color_system=None, highlight=False)
    if color != "auto":
        raise ConfigurationError(f"unknown color mode '{color}'")
    return Console(highlight=False)


# --- Configuration Constants ---
DEFAULT_ENCODING = "utf-8"
LINE_SEPARATOR = "\n"
END_OF_STREAM = None


# --- Data Structures ---
class MatchSpan(NamedTuple):
    """A half-open [start, end) range of one match within a line."""

    start: int
    end: int


class Line(NamedTuple):
    """One line of a scanned input, numbered from 1, without its separator."""

    index: int
    content: str


class FileRecord(NamedTuple):
    """A file found during a directory walk together with its decoded text."""

    path: Path
    content: str


@dataclass(frozen=True)
class Palette:
    """The four display styles used when rendering matched lines."""

    match: StyleType = "green"
    context: StyleType = "white"
    line_number: StyleType = "red"
    header: StyleType = "blue"


DEFAULT_PALETTE = Palette()
PLAIN_PALETTE = Palette(match="", context="", line_number="", header="")

# Console.color_system names mapped back to the enum Style.render expects
COLOR_SYSTEMS = {
    "standard": ColorSystem.STANDARD,
    "256": ColorSystem.EIGHT_BIT,
    "truecolor": ColorSystem.TRUECOLOR,
    "windows": ColorSystem.WINDOWS,
}


def styled(text: str, style: StyleType) -> Segment:
    """Wraps raw text in a Segment without sanitizing or expanding it."""
    if not style:
        return Segment(text)
    return Segment(text, style if isinstance(style, Style) else Style.parse(style))


@dataclass
class RenderedOutput:
    """Styled segments accumulated for one scanned input."""

    segments: List[Segment] = field(default_factory=list)
    lines_scanned: int = 0
    zero_match_lines: int = 0

    @property
    def has_matches(self) -> bool:
        return self.zero_match_lines < self.lines_scanned

    @property
    def matched_lines(self) -> int:
        return self.lines_scanned - self.zero_match_lines

    @property
    def plain(self) -> str:
        return "".join(segment.text for segment in self.segments)


@dataclass
class SearchConfig:
    """Holds the settings for a single search run."""

    pattern: str
    text_args: List[str] = field(default_factory=list)
    trim: bool = True
    input_path: Optional[Path] = None
    output_path: Optional[Path] = None
    max_workers: Optional[int] = None
    sort_paths: bool = False
    ignore_case: bool = False

    @classmethod
    def normalize_inputs(
        cls,
        pattern: Optional[str],
        text_args: Optional[List[str]] = None,
        trim: bool = True,
        input_path: Optional[Union[str, Path]] = None,
        output_path: Optional[Union[str, Path]] = None,
        max_workers: Optional[int] = None,
        sort_paths: bool = False,
        ignore_case: bool = False,
    ) -> "SearchConfig":
        """
        Consolidates loose user input into a SearchConfig.

        Args:
            pattern (str): The regular expression to search for. Required.
            text_args (list, optional): Words joined with spaces and scanned
                as literal text when no input path is given.
            trim (bool): Strip tabs and spaces around matches when printing.
            input_path (str or Path, optional): A file or directory to scan.
            output_path (str or Path, optional): A new file to mirror the
                plain-text output into.
            max_workers (int, optional): Reader threads for directory scans.
            sort_paths (bool): Print directory results ordered by path.
            ignore_case (bool): Match case-insensitively.

        Returns:
            SearchConfig: The normalized configuration.

        Raises:
            ConfigurationError: If the pattern is missing or max_workers is
                not positive.
        """
        if pattern is None:
            raise ConfigurationError("a pattern to match is required")
        if max_workers is not None and max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        return cls(
            pattern=pattern,
            text_args=list(text_args or []),
            trim=trim,
            input_path=Path(input_path) if input_path else None,
            output_path=Path(output_path) if output_path else None,
            max_workers=max_workers,
            sort_paths=sort_paths,
            ignore_case=ignore_case,
        )


@dataclass
class SearchSummary:
    """Counters describing a finished search run."""

    inputs_scanned: int = 0
    inputs_matched: int = 0
    lines_matched: int = 0
    elapsed: float = 0.0
    output_path: Optional[Path] = None


# --- Matching & Rendering ---
class PatternEngine:
    """A compiled regular expression that reports every match on a line."""

    def __init__(self, pattern: str, ignore_case: bool = False):
        try:
            self.regex = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
        except re.error as e:
            raise ConfigurationError(f"invalid pattern '{pattern}': {e}") from e

    def find_matches(self, line: str) -> List[MatchSpan]:
        return [MatchSpan(*m.span()) for m in self.regex.finditer(line)]


def _drop_separator(text: str) -> str:
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith(LINE_SEPARATOR):
        return text[:-1]
    return text


class LineRenderer:
    """Turns a line and its match spans into a styled display line."""

    def __init__(self, palette: Palette = DEFAULT_PALETTE):
        self.palette = palette

    def render(
        self, line: str, spans: List[MatchSpan], line_number: int, trim: bool
    ) -> Optional[List[Segment]]:
        """
        Renders one line as "<n>. " followed by its text with matches styled.

        With trimming enabled, leading tabs are removed from the text before
        each match, trailing tabs and the line terminator from the text after
        the last match, and finally spaces from both outer edges of the line.
        Matched text is never altered. With trimming disabled the content is
        kept verbatim apart from a trailing line terminator.

        Args:
            line (str): The line, with or without its terminator.
            spans (List[MatchSpan]): Ordered, non-overlapping matches.
            line_number (int): The 1-based number shown in the prefix.
            trim (bool): Whether to apply the trimming rules.

        Returns:
            Optional[List[Segment]]: The styled line without a terminator,
                or None if there are no matches.
        """
        if not spans:
            return None

        # (text, is_match) pairs in display order
        segments = []
        cursor = 0
        for span in spans:
            pre = line[cursor : span.start]
            if trim:
                pre = pre.lstrip("\t")
            segments.append((pre, False))
            segments.append((line[span.start : span.end], True))
            cursor = span.end
        post = line[cursor:]
        post = post.rstrip("\t\r\n") if trim else _drop_separator(post)
        segments.append((post, False))

        if trim:
            segments[0] = (segments[0][0].lstrip(" "), False)
            segments[-1] = (segments[-1][0].rstrip(" "), False)

        rendered = [styled(f"{line_number}. ", self.palette.line_number)]
        for text, is_match in segments:
            if text:
                style = self.palette.match if is_match else self.palette.context
                rendered.append(styled(text, style))
        return rendered


def iter_lines(content: str) -> Iterator[Line]:
    """Splits a text blob on newlines into numbered lines without separators."""
    if not content:
        return
    parts = content.split(LINE_SEPARATOR)
    if parts[-1] == "":
        parts.pop()
    for index, part in enumerate(parts, start=1):
        yield Line(index, part[:-1] if part.endswith("\r") else part)


# --- Directory Traversal ---
class VisitedSet:
    """Canonical paths already claimed during one traversal."""

    def __init__(self):
        self._paths = set()
        self._lock = threading.Lock()

    def claim(self, path: Union[str, Path]) -> bool:
        """Records a path, returning False if it had already been claimed."""
        canonical = os.path.realpath(path)
        with self._lock:
            if canonical in self._paths:
                return False
            self._paths.add(canonical)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)


def read_text_file(file_path: Path) -> Optional[FileRecord]:
    """
    Reads a file found during a walk, discarding anything that is not text.

    Args:
        file_path (Path): The file to read.

    Returns:
        Optional[FileRecord]: The record, or None if the file could not be
            opened, is not valid UTF-8, or contains NUL bytes.
    """
    try:
        data = file_path.read_bytes()
        if b"\x00" in data:
            return None
        return FileRecord(file_path, data.decode(DEFAULT_ENCODING))
    except (OSError, UnicodeDecodeError):
        return None


class DirectoryWalker:
    """Walks a tree once per real path and reads every file concurrently."""

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max_workers or (os.cpu_count() or 1) + 4

    def walk(self, root: Union[str, Path], records: queue.Queue) -> None:
        """
        Puts a FileRecord on `records` for every readable text file under root.

        END_OF_STREAM is put on the queue only after every read task has
        finished, whether or not the walk itself succeeded.

        Args:
            root (str or Path): The directory to walk.
            records (queue.Queue): Receives FileRecords, then END_OF_STREAM.

        Raises:
            TraversalError: If any directory in the tree cannot be listed.
        """
        visited = VisitedSet()
        futures = []

        def read_task(file_path: Path):
            if record := read_text_file(file_path):
                records.put(record)

        try:
            with ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="reader"
            ) as executor:
                root = Path(root)
                visited.claim(root)
                self._discover(
                    root,
                    visited,
                    lambda p: futures.append(executor.submit(read_task, p)),
                )
            for future in futures:
                future.result()
        finally:
            records.put(END_OF_STREAM)

    def _discover(
        self,
        root: Path,
        visited: VisitedSet,
        schedule: Callable[[Path], None],
    ):
        """Depth-first discovery with an explicit stack of pending directories."""
        pending = [root]
        while pending:
            current_path = pending.pop()
            try:
                with os.scandir(current_path) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                raise TraversalError(
                    f"can't list directory '{current_path}': {e}"
                ) from e

            subdirectories = []
            for entry in entries:
                entry_path = Path(entry.path)
                if not visited.claim(entry_path):
                    continue
                if entry.is_dir():
                    subdirectories.append(entry_path)
                elif entry.is_file():
                    schedule(entry_path)
            pending.extend(reversed(subdirectories))


class ResultAggregator:
    """Collects everything a DirectoryWalker produces for one root."""

    def __init__(self, walker: Optional[DirectoryWalker] = None):
        self.walker = walker or DirectoryWalker()

    def collect(self, root: Union[str, Path]) -> List[FileRecord]:
        records: queue.Queue = queue.Queue()
        collected: List[FileRecord] = []

        def drain():
            while (record := records.get()) is not END_OF_STREAM:
                collected.append(record)

        consumer = threading.Thread(target=drain, name="aggregator", daemon=True)
        consumer.start()
        try:
            self.walker.walk(root, records)
        finally:
            consumer.join()
        return collected


# --- Output ---
class OutputSink:
    """
    Prints rendered output to the interactive console and, optionally,
    mirrors a style-free copy into a file that must not exist yet.
    """

    def __init__(
        self,
        console: Console,
        output_path: Optional[Path] = None,
        diagnostics: Optional[ConsoleManager] = None,
    ):
        self.console = console
        self.output_path = output_path
        self.diagnostics = diagnostics or ConsoleManager()
        self._file = None

    def open(self):
        if self.output_path is None or self._file is not None:
            return
        try:
            self._file = open(
                self.output_path, "x", encoding=DEFAULT_ENCODING, newline=""
            )
        except FileExistsError as e:
            raise OutputSinkError(
                f"output file '{self.output_path}' already exists"
            ) from e
        except OSError as e:
            raise OutputSinkError(
                f"output file '{self.output_path}' couldn't be created: {e}"
            ) from e

    def write(self, rendered: RenderedOutput):
        if not rendered.plain:
            return
        self._print(rendered.segments)
        if self._file is None:
            return
        try:
            self._file.write(rendered.plain)
        except OSError as e:
            self.diagnostics.warning(
                f"couldn't write output to '{self.output_path}': {e}"
            )
            self.close()

    def _print(self, segments: List[Segment]):
        """Writes segments to the console verbatim, styled only if it has colors."""
        color_system = COLOR_SYSTEMS.get(self.console.color_system)
        out = self.console.file
        for segment in segments:
            if segment.style and color_system is not None:
                out.write(
                    segment.style.render(
                        segment.text,
                        color_system=color_system,
                        legacy_windows=self.console.legacy_windows,
                    )
                )
            else:
                out.write(segment.text)
        out.flush()

    def close(self):
        if self._file is None:
            return
        output_file, self._file = self._file, None
        try:
            output_file.close()
        except OSError as e:
            self.diagnostics.warning(
                f"couldn't finish writing '{self.output_path}': {e}"
            )

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# --- Orchestration ---
class SearchDriver:
    """Selects the input source, scans it and sends the results to the sink."""

    def __init__(
        self,
        config: SearchConfig,
        console: Optional[Console] = None,
        diagnostics: Optional[ConsoleManager] = None,
        palette: Palette = DEFAULT_PALETTE,
    ):
        self.config = config
        self.console = console or make_output_console()
        self.diagnostics = diagnostics or ConsoleManager()
        self.palette = palette
        self.engine = PatternEngine(config.pattern, ignore_case=config.ignore_case)
        self.renderer = LineRenderer(palette)

    def scan(self, content: str, header: Optional[str] = None) -> RenderedOutput:
        """
        Matches and renders every line of one input.

        The header is prepended only when at least one line matched; an input
        without matches renders to no segments.
        """
        output = RenderedOutput()
        body: List[Segment] = []
        for line in iter_lines(content):
            output.lines_scanned += 1
            spans = self.engine.find_matches(line.content)
            rendered = self.renderer.render(
                line.content, spans, line.index, self.config.trim
            )
            if rendered is None:
                output.zero_match_lines += 1
                continue
            body.extend(rendered)
            body.append(Segment(LINE_SEPARATOR))

        if output.has_matches:
            if header is not None:
                output.segments.append(styled(f"{header}: ", self.palette.header))
                output.segments.append(Segment(LINE_SEPARATOR))
            output.segments.extend(body)
        return output

    def run(self) -> SearchSummary:
        """
        Runs the search end to end.

        Returns:
            SearchSummary: Counters for the finished run.

        Raises:
            SourceAccessError: If the input cannot be read.
            OutputSinkError: If the mirror file cannot be created.
        """
        start_time = time.perf_counter()
        summary = SearchSummary(output_path=self.config.output_path)
        with OutputSink(
            self.console, self.config.output_path, self.diagnostics
        ) as sink:
            for content, header in self._inputs():
                rendered = self.scan(content, header)
                summary.inputs_scanned += 1
                if rendered.has_matches:
                    summary.inputs_matched += 1
                    summary.lines_matched += rendered.matched_lines
                    sink.write(rendered)
        summary.elapsed = time.perf_counter() - start_time
        return summary

    def _inputs(self) -> Iterator[tuple]:
        """Yields (content, header) pairs for the selected input source."""
        input_path = self.config.input_path
        if input_path is not None:
            try:
                info = input_path.stat()
            except OSError as e:
                raise SourceAccessError(
                    f"can't open given file or directory '{input_path}': {e}"
                ) from e
            if stat.S_ISDIR(info.st_mode):
                walker = DirectoryWalker(self.config.max_workers)
                records = ResultAggregator(walker).collect(input_path)
                if self.config.sort_paths:
                    records.sort(key=lambda r: r.path.as_posix())
                for record in records:
                    yield record.content, str(record.path)
                return
            yield self._read_file(input_path), None
        elif self.config.text_args:
            yield " ".join(self.config.text_args), None
        else:
            yield self._read_stdin(), None

    @staticmethod
    def _read_file(file_path: Path) -> str:
        try:
            return file_path.read_text(encoding=DEFAULT_ENCODING)
        except (OSError, UnicodeDecodeError) as e:
            raise SourceAccessError(f"can't read given file '{file_path}': {e}") from e

    @staticmethod
    def _read_stdin() -> str:
        try:
            return sys.stdin.read()
        except (OSError, UnicodeDecodeError) as e:
            raise SourceAccessError(f"invalid input: {e}") from e


# --- Main Entry Point ---
def search(
    pattern: str,
    *text: str,
    trim: bool = True,
    input_path: Optional[Union[str, Path]] = None,
    output_path: Optional[Union[str, Path]] = None,
    max_workers: Optional[int] = None,
    sort_paths: bool = False,
    ignore_case: bool = False,
    color: str = "auto",
    show_stats: bool = False,
    console: Optional[Console] = None,
    diagnostics: Optional[ConsoleManager] = None,
) -> SearchSummary:
    """
    Searches stdin, inline text, a file, or a directory tree for a pattern.

    Matching lines are printed with their line numbers and matches styled.
    The source is chosen in this order: `input_path` if given, then the
    inline `text` words joined with single spaces, then standard input.

    Args:
        pattern (str): The regular expression to search for.
        *text (str): Literal text to scan when no input path is given.
        trim (bool): Strip tabs and outer spaces around matches. Defaults to True.
        input_path (str or Path, optional): A file or directory to scan. Every
            readable UTF-8 file in a directory tree is scanned once, with a
            header naming the file above its matches.
        output_path (str or Path, optional): A new file that receives a
            plain-text copy of the output. Must not already exist.
        max_workers (Optional[int]): Reader threads for directory scans.
            Defaults to CPU count + 4.
        sort_paths (bool): Print directory results ordered by path. By default
            files appear in the order their reads completed.
        ignore_case (bool): Match case-insensitively. Defaults to False.
        color (str): "auto", "always" or "never". Ignored if `console` is given.
        show_stats (bool): Print a summary table to stderr when done.
        console (Console, optional): Where matched lines are printed.
        diagnostics (ConsoleManager, optional): Where warnings and the summary go.

    Returns:
        SearchSummary: Counters for the finished run.

    Raises:
        ConfigurationError: If the pattern is missing or invalid.
        SourceAccessError: If the input cannot be read.
        OutputSinkError: If the output file exists or cannot be created.
    """
    config = SearchConfig.normalize_inputs(
        pattern,
        text_args=list(text),
        trim=trim,
        input_path=input_path,
        output_path=output_path,
        max_workers=max_workers,
        sort_paths=sort_paths,
        ignore_case=ignore_case,
    )
    diagnostics = diagnostics or ConsoleManager()
    driver = SearchDriver(
        config,
        console=console or make_output_console(color),
        diagnostics=diagnostics,
    )
    summary = driver.run()

    if show_stats:
        diagnostics.print_table(
            "Search Complete",
            ["Metric", "Value"],
            [
                ["Inputs Scanned", f"{summary.inputs_scanned}"],
                ["Inputs Matched", f"[bold green]{summary.inputs_matched}[/bold green]"],
                ["Lines Matched", f"{summary.lines_matched}"],
                ["Total Time", f"{summary.elapsed:.2f} seconds"],
                ["Output File", escape(str(summary.output_path or "N/A"))],
            ],
        )
    return summary
