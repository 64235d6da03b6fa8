"""
Command line entry point for spangrep.
"""

import sys
from pathlib import Path
from typing import Optional, Tuple

import rich_click as click

from .spangrep import ConsoleManager, SpangrepError, search


@click.command()
@click.argument("pattern", required=True)
@click.argument("text", nargs=-1)
@click.option(
    "-f",
    "--file",
    "input_path",
    type=click.Path(path_type=Path),
    help="Take input from a file or directory instead of TEXT or stdin",
)
@click.option(
    "-o",
    "--output",
    "output_path",
    type=click.Path(path_type=Path),
    help="Save a plain-text copy of the matches to a new file",
)
@click.option(
    "--no-trim",
    is_flag=True,
    help="Keep leading indentation and trailing whitespace on printed lines",
)
@click.option(
    "-i",
    "--ignore-case",
    is_flag=True,
    help="Match PATTERN case-insensitively",
)
@click.option(
    "--color",
    type=click.Choice(["auto", "always", "never"]),
    default="auto",
    show_default=True,
    help="When to style the output",
)
@click.option(
    "-w",
    "--workers",
    type=click.IntRange(min=1),
    default=None,
    help="Reader threads used for directory scans (default: CPU count + 4)",
)
@click.option(
    "--sort",
    "sort_paths",
    is_flag=True,
    help="Print directory results ordered by file path",
)
@click.option(
    "--stats",
    is_flag=True,
    help="Print a summary table to stderr when the search finishes",
)
def main(
    pattern: str,
    text: Tuple[str, ...],
    input_path: Optional[Path],
    output_path: Optional[Path],
    no_trim: bool,
    ignore_case: bool,
    color: str,
    workers: Optional[int],
    sort_paths: bool,
    stats: bool,
):
    """Print every line matching the regular expression [bold]PATTERN[/bold].

    Input comes from [cyan]--file[/cyan] (a file or a whole directory tree),
    otherwise from the TEXT words joined with spaces, otherwise from stdin.

    Examples:
      spangrep 'ab+' xabby
      spangrep -f src 'def \\w+' --sort
      cat app.log | spangrep -o errors.txt 'ERROR.*'
    """
    diagnostics = ConsoleManager()
    try:
        search(
            pattern,
            *text,
            trim=not no_trim,
            input_path=input_path,
            output_path=output_path,
            max_workers=workers,
            sort_paths=sort_paths,
            ignore_case=ignore_case,
            color=color,
            show_stats=stats,
            diagnostics=diagnostics,
        )
    except SpangrepError as e:
        diagnostics.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
