"""
spangrep - A regular-expression search tool for text, files and directory
trees with styled match output.
"""

from .spangrep import (
    search,
    SearchConfig,
    SearchDriver,
    SearchSummary,
    PatternEngine,
    LineRenderer,
    DirectoryWalker,
    ResultAggregator,
    OutputSink,
    ConsoleManager,
    MatchSpan,
    FileRecord,
    RenderedOutput,
    Palette,
    DEFAULT_PALETTE,
    PLAIN_PALETTE,
    SpangrepError,
    ConfigurationError,
    SourceAccessError,
    TraversalError,
    OutputSinkError,
)

__all__ = [
    # The primary function for running a search.
    "search",
    "SearchConfig",
    "SearchDriver",
    "SearchSummary",

    # Building blocks of a search run.
    "PatternEngine",
    "LineRenderer",
    "DirectoryWalker",
    "ResultAggregator",
    "OutputSink",
    "ConsoleManager",
    "MatchSpan",
    "FileRecord",
    "RenderedOutput",
    "Palette",
    "DEFAULT_PALETTE",
    "PLAIN_PALETTE",

    # Errors.
    "SpangrepError",
    "ConfigurationError",
    "SourceAccessError",
    "TraversalError",
    "OutputSinkError",
]

__version__ = "0.1.0"
