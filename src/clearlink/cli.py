"""
ClearLink CLI - Command Line Interface

Entry point for command-line operations: cleaning URLs with the engine,
and validating or fetching rule documents.
"""

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

# Version
__version__ = "0.1.0"

# Create CLI app
app = typer.Typer(
    name="clearlink",
    help="ClearLink - Tracking parameter removal engine",
    add_completion=False,
    no_args_is_help=True,
)

rules_app = typer.Typer(help="Validate and fetch rule documents")
app.add_typer(rules_app, name="rules")

# Rich console for output
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# ============================================================================
# Main Commands
# ============================================================================

@app.command()
def clean(
    urls: List[str] = typer.Argument(..., help="URLs to clean"),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Engine configuration file",
        exists=True,
    ),
    rules: Optional[str] = typer.Option(
        None,
        "--rules",
        "-r",
        help="Rule document path or URL (defaults to bundled rules)",
    ),
    remote: bool = typer.Option(
        False,
        "--remote",
        help="Load rules from the configured rules.source instead of the bundled rules",
    ),
    referral: bool = typer.Option(
        False,
        "--referral",
        help="Also remove referral marketing parameters",
    ),
    ai: bool = typer.Option(
        False,
        "--ai",
        help="Escalate unresolved parameters to the configured inference endpoint",
    ),
    exclude: Optional[List[str]] = typer.Option(
        None,
        "--exclude",
        "-x",
        help="Domain to leave untouched by provider and global rules",
    ),
    custom: Optional[List[str]] = typer.Option(
        None,
        "--custom",
        help="Custom parameter pattern (regex)",
    ),
    no_expand: bool = typer.Option(
        False,
        "--no-expand",
        help="Do not expand shortened links",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print results as JSON",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Verbose output",
    ),
) -> None:
    """
    Clean one or more URLs and show what was removed.
    """
    import asyncio
    import re
    from clearlink.core.config import load_engine_config
    from clearlink.core.exceptions import ClearLinkError
    from clearlink.core.models import CustomRule, SanitizePolicy
    from clearlink.orchestrator.pipeline import CleaningPipeline
    from clearlink.rules.loader import RuleLoader
    from clearlink.rules.store import RuleStore

    _setup_logging(verbose)

    try:
        engine_config = load_engine_config(config)
        if no_expand:
            engine_config.expansion.enabled = False

        try:
            custom_rules = [CustomRule.from_text("cli", pattern) for pattern in custom or []]
        except re.error as e:
            console.print(f"[red]Error:[/red] Invalid custom pattern: {e}")
            raise typer.Exit(code=1)

        policy = SanitizePolicy(
            remove_referral_marketing=referral,
            allow_ai_fallback=ai,
            domain_exceptions=frozenset(exclude or []),
            owner="cli",
        )

        async def run_clean():
            store = RuleStore()
            source = rules or (engine_config.rules.source if remote else None)
            if source:
                loader = RuleLoader(source, timeout=engine_config.rules.fetch_timeout)
                store.install(await loader.load())
            pipeline = CleaningPipeline.from_config(engine_config, store=store)
            return await pipeline.sanitize_all(urls, custom_rules, policy)

        results = asyncio.run(run_clean())

    except ClearLinkError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if as_json:
        console.print_json(json.dumps([r.to_dict() for r in results]))
        return

    for result in results:
        style = "green" if result.changed else "dim"
        console.print(f"[{style}]{escape(result.cleaned_url)}[/{style}]")
        if result.error:
            console.print(f"  [yellow]{result.error}[/yellow]")
        if result.expansion_hops:
            partial = " (partial)" if result.partial_expansion else ""
            console.print(f"  [blue]Expanded in {result.expansion_hops} hop(s){partial}[/blue]")
        if result.removals:
            table = Table(show_header=True, box=None, padding=(0, 2))
            table.add_column("Removed", style="cyan")
            table.add_column("Source", style="magenta")
            for removal in result.removals:
                table.add_row(escape(removal.key), removal.source.value)
            console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[bold cyan]ClearLink[/bold cyan] version [yellow]{__version__}[/yellow]")


# ============================================================================
# Rules Commands
# ============================================================================

@rules_app.command("check")
def rules_check(
    path: Path = typer.Argument(..., help="Rule document to validate", exists=True),
) -> None:
    """Compile a rule document and list its providers."""
    from clearlink.core.exceptions import RuleError
    from clearlink.rules.loader import compile_ruleset

    try:
        ruleset = compile_ruleset(path.read_text(encoding="utf-8"), source=str(path))
    except (RuleError, OSError) as e:
        console.print(f"[red]Invalid rule document:[/red] {e}")
        raise typer.Exit(code=1)

    _print_ruleset(ruleset)
    console.print(
        f"[green]✓[/green] {ruleset.provider_count} providers compiled"
        f" ({_case_insensitive_count(ruleset)} case-insensitive rules)"
    )


@rules_app.command("fetch")
def rules_fetch(
    source: Optional[str] = typer.Option(
        None,
        "--source",
        "-s",
        help="Rule document URL (defaults to configured source)",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Save the validated document to this file",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Engine configuration file",
        exists=True,
    ),
) -> None:
    """Fetch a rule document and validate it before use."""
    import asyncio
    from clearlink.core.config import load_engine_config
    from clearlink.core.exceptions import ClearLinkError
    from clearlink.rules.loader import RuleLoader, compile_ruleset

    try:
        engine_config = load_engine_config(config)
        loader = RuleLoader(source or engine_config.rules.source, timeout=engine_config.rules.fetch_timeout)
        console.print(f"[blue]Fetching:[/blue] {loader.source}")
        raw = asyncio.run(loader.fetch())
        ruleset = compile_ruleset(raw, source=loader.source)
    except ClearLinkError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    _print_ruleset(ruleset)
    if output:
        output.write_text(raw, encoding="utf-8")
        console.print(f"[green]✓[/green] Saved to {output}")


def _print_ruleset(ruleset) -> None:
    table = Table(title=f"Providers ({ruleset.source})")
    table.add_column("Provider", style="cyan")
    table.add_column("Rules", style="green")
    table.add_column("Referral", style="yellow")
    table.add_column("Exceptions", style="blue")
    table.add_column("Redirections", style="magenta")

    groups = sorted(ruleset.providers.values(), key=lambda p: p.name)
    if ruleset.global_rules is not None:
        groups.insert(0, ruleset.global_rules)

    for provider in groups:
        table.add_row(
            provider.name,
            str(len(provider.rules)),
            str(len(provider.referral_marketing)),
            str(len(provider.exceptions)),
            str(len(provider.redirections)),
        )
    console.print(table)


def _case_insensitive_count(ruleset) -> int:
    groups = list(ruleset.providers.values())
    if ruleset.global_rules is not None:
        groups.append(ruleset.global_rules)
    return sum(
        rule.case_insensitive
        for provider in groups
        for rule in provider.rules + provider.referral_marketing
    )


# ============================================================================
# Entry Point
# ============================================================================

def main() -> None:
    """Main entry point for CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
