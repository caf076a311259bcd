import logging
import sys
from pathlib import Path
from typing import Optional

import click

from ._version import get_version
from .config import VALID_MODES, get_settings
from .exceptions import ClipForgeError
from .logger import configure_file_logging

# Lazy load rich to keep `--help` fast
_console = None


def get_console():
    global _console
    if _console is None:
        from rich.console import Console
        _console = Console()
    return _console


def _fail(error: ClipForgeError) -> None:
    from rich.markup import escape
    get_console().print(f"[bold red]❌ {type(error).__name__}:[/] {escape(str(error))}")
    sys.exit(1)


@click.group()
@click.version_option(version=get_version(), prog_name="clipforge")
def cli():
    """ClipForge - declarative AI video compositions to NLE timelines"""
    pass


@cli.command()
@click.argument("composition", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-f", "--format", "fmt", default=None, help="interchange-json (otio) or interchange-xml (xml, premiere)")
@click.option("-m", "--mode", type=click.Choice(VALID_MODES), default=None, help="Run mode")
@click.option("-o", "--output", type=click.Path(path_type=Path), default=None, help="Output file or directory")
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Cache directory")
@click.option("--no-cache", is_flag=True, default=False, help="Keep the cache in memory for this run")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Also write the run log to this file")
def export(composition: Path, fmt: Optional[str], mode: Optional[str], output: Optional[Path],
           cache_dir: Optional[Path], no_cache: bool, log_file: Optional[Path]):
    """Resolve a composition document and write an interchange timeline."""
    console = get_console()
    from rich.markup import escape
    from rich.table import Table

    from .core.nodes import load_composition
    from .export import export_timeline

    handler = configure_file_logging(log_file) if log_file else None
    try:
        render_node = load_composition(composition)
        result = export_timeline(
            render_node,
            fmt,
            mode=mode,
            output=output,
            cache_dir=cache_dir,
            use_cache=False if no_cache else None,
            name=composition.stem,
        )
    except ClipForgeError as e:
        _fail(e)
        return
    finally:
        if handler is not None:
            logging.getLogger("clipforge").removeHandler(handler)
            handler.close()

    summary = result.summary
    table = Table(title=f"Exported {result.timeline_path}")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")
    table.add_row("Format", result.format)
    table.add_row("Clips", str(summary.clip_count))
    table.add_row("Tracks", str(summary.track_count))
    table.add_row("Transitions", str(summary.transition_count))
    table.add_row("Text items", str(summary.text_item_count))
    table.add_row("Assets", str(len(result.assets)))
    table.add_row("Placeholders", str(summary.placeholder_count))
    table.add_row("Skipped clips", str(summary.skipped_clips))
    table.add_row("Duration", f"{summary.total_duration:.2f}s")
    console.print(table)

    for warning in summary.warnings:
        console.print(f"[yellow]⚠️  {warning.code}:[/] {escape(warning.message)}")


@cli.command()
@click.argument("composition", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def inspect(composition: Path):
    """Show the node tree and the cache key of every producible node."""
    console = get_console()
    from rich.markup import escape
    from rich.tree import Tree

    from .core.cache_key import derive_key, key_digest
    from .core.nodes import load_composition, normalize_prompt
    from .exceptions import ResolutionError

    try:
        render_node = load_composition(composition)
    except ClipForgeError as e:
        _fail(e)
        return

    def label(node) -> str:
        text = f"[bold cyan]{escape(node.describe())}[/]"
        if not node.is_media:
            return text
        try:
            digest = key_digest(derive_key(node))
        except ResolutionError as e:
            return f"{text} [red]({escape(str(e))})[/]"
        return f"{text} [dim]{digest[:16]}[/]"

    def add(branch, node) -> None:
        child = branch.add(label(node))
        prompt = normalize_prompt(node.props.get("prompt"))
        if prompt is not None:
            for ref in prompt.node_references:
                add(child.add("[magenta]ref[/]"), ref)
        for item in node.children:
            if isinstance(item, str):
                child.add(f'[green]"{escape(item)}"[/]')
            else:
                add(child, item)

    tree = Tree(f"🎬 {composition.name}")
    add(tree, render_node)
    console.print(tree)


@cli.group()
def cache():
    """Manage the content-addressed media cache."""
    pass


@cache.command("clear")
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Cache directory")
def cache_clear(cache_dir: Optional[Path]):
    """Remove every cache entry and the generated media files."""
    from .core.cache import FileCache

    directory = cache_dir or get_settings().paths.cache_dir
    removed = FileCache(directory).clear()
    get_console().print(f"🧹 Removed [bold]{removed}[/] cache entries and their media from {directory}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
