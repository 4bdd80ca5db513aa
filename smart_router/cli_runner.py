"""CLI runner for Smart Router.

Inspect how a request would be analyzed and routed, execute it against the
built-in mock provider, and show persisted learning state.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import logfire
from rich.console import Console
from rich.table import Table

from smart_router import __version__
from smart_router.core.context_analyzer import analyze_context
from smart_router.core.errors import RoutingError
from smart_router.core.intelligent_router import IntelligentModelRouter, RoutingDecision
from smart_router.core.model_catalog import load_catalog
from smart_router.core.routing_state import RoutingState
from smart_router.providers.mock import MockProvider
from smart_router.settings import PathSettings, Settings, get_settings

logger = logging.getLogger(__name__)


def configure_logfire() -> None:
    """Configure logfire; events only leave the process when a token is set."""
    try:
        logfire.configure(
            service_name="smart-router",
            send_to_logfire="if-token-present",
            inspect_arguments=False,
            console=False,
        )
    except Exception as e:
        logger.debug(f"Logfire configuration failed: {e}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smart-router",
        description="Smart Router - privacy-aware model routing",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"{__version__}",
        help="Show version and exit",
    )
    parser.add_argument(
        "--state-dir",
        type=str,
        help="Directory holding persisted performance and preference state",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Classify a request without routing it")
    analyze.add_argument("text", help="Request text")
    analyze.add_argument("--tool", action="append", default=[], help="Tool name (repeatable)")
    analyze.add_argument(
        "--privacy-mode",
        choices=["strict", "balanced", "performance"],
        help="Privacy mode override",
    )

    route = subparsers.add_parser("route", help="Pick a model for a request")
    route.add_argument("text", help="Request text")
    route.add_argument("--tool", action="append", default=[], help="Tool name (repeatable)")
    route.add_argument(
        "--privacy-mode",
        choices=["strict", "balanced", "performance"],
        help="Privacy mode override",
    )
    route.add_argument("--budget", type=float, help="Cost budget in USD")
    route.add_argument(
        "--catalog",
        type=str,
        help="JSON model catalog (defaults to the built-in mock models)",
    )
    route.add_argument(
        "--execute",
        action="store_true",
        help="Run the request through the fallback chain on the mock provider",
    )
    route.add_argument(
        "--save",
        action="store_true",
        help="Persist updated performance state after executing",
    )

    subparsers.add_parser("stats", help="Show persisted performance and preference state")
    return parser


def _settings_for(args: argparse.Namespace) -> Settings:
    settings = get_settings()
    if args.state_dir:
        settings = settings.model_copy(
            update={"paths": PathSettings(state_dir_override=args.state_dir)}
        )
    return settings


def _build_router(settings: Settings, catalog: Optional[str]) -> IntelligentModelRouter:
    state = RoutingState.from_settings(settings)
    models = load_catalog(catalog) if catalog else None
    state.registry.register_provider(MockProvider(models=models))
    state.load_from_dir(settings)
    return IntelligentModelRouter(state, settings=settings)


def _messages(text: str) -> List[dict]:
    return [{"role": "user", "text": text}]


def cmd_analyze(args: argparse.Namespace, console: Console) -> int:
    settings = _settings_for(args)
    analysis = analyze_context(
        _messages(args.text),
        tools=args.tool,
        privacy_mode=args.privacy_mode,
        max_scan_chars=settings.analyzer.max_scan_chars,
    )
    table = Table(title="Task analysis", show_header=False)
    table.add_column("field", style="cyan")
    table.add_column("value")
    table.add_row("task type", analysis.task_type.value)
    table.add_row("complexity", analysis.complexity.value)
    table.add_row("privacy level", analysis.privacy_level.value)
    table.add_row("requires privacy", str(analysis.requires_privacy))
    table.add_row("domains", ", ".join(d.value for d in analysis.detected_domains) or "-")
    table.add_row("tokens in/out", f"{analysis.expected_input_tokens} / {analysis.expected_output_tokens}")
    table.add_row("time constraint", analysis.time_constraint.value)
    table.add_row("confidence", f"{analysis.confidence:.2f}")
    table.add_row("reasons", ", ".join(analysis.reasons) or "-")
    console.print(table)
    return 0


def _print_decision(decision: RoutingDecision, console: Console) -> None:
    console.print(f"[bold green]{decision.model.id}[/bold green]  {decision.reasoning}")
    reason = decision.structured_reason
    console.print(
        f"[dim]gate={reason.privacy_gate}  factors={', '.join(reason.dominant_factors) or '-'}  "
        f"expected cost=${reason.expected_cost_usd:.5f}  source={decision.source}[/dim]"
    )
    if decision.alternatives:
        table = Table(title="Alternatives")
        table.add_column("model", style="cyan")
        table.add_column("local")
        table.add_column("score", justify="right")
        table.add_column("notes")
        for alt in decision.alternatives:
            table.add_row(alt.id, "yes" if alt.is_local else "no", f"{alt.score:.1f}", ", ".join(alt.notes))
        console.print(table)


def cmd_route(args: argparse.Namespace, console: Console) -> int:
    settings = _settings_for(args)
    router = _build_router(settings, args.catalog)
    tools = args.tool or None

    if not args.execute:
        decision = router.select_model(
            _messages(args.text),
            tools,
            privacy_mode=args.privacy_mode,
            cost_budget=args.budget,
        )
        _print_decision(decision, console)
        return 0

    result = asyncio.run(
        router.execute(
            _messages(args.text),
            tools,
            privacy_mode=args.privacy_mode,
            cost_budget=args.budget,
        )
    )
    _print_decision(result.decision, console)
    if result.decision.is_fallback:
        console.print(f"[yellow]Served by fallback (primary {result.decision.fallback_from})[/yellow]")
    console.print(result.response.text or "")
    console.print(f"[dim]latency={result.latency_ms:.1f}ms  cost=${result.cost_usd:.5f}[/dim]")
    if args.save:
        router.state.save_to_dir(settings)
        console.print(f"[dim]State saved to {settings.paths.state_dir}[/dim]")
    return 0


def cmd_stats(args: argparse.Namespace, console: Console) -> int:
    settings = _settings_for(args)
    state = RoutingState.from_settings(settings)
    state.load_from_dir(settings)

    summary = state.tracker.summary()
    if not summary:
        console.print("[dim]No performance data recorded yet.[/dim]")
    else:
        table = Table(title="Model performance")
        table.add_column("model", style="cyan")
        table.add_column("success", justify="right")
        table.add_column("latency ms", justify="right")
        table.add_column("avg cost $", justify="right")
        table.add_column("samples", justify="right")
        for model_id, stats in sorted(summary.items()):
            table.add_row(
                model_id,
                f"{stats['success_rate']:.2f}",
                f"{stats['avg_latency_ms']:.0f}",
                f"{stats['avg_cost_usd']:.5f}",
                str(stats["samples"]),
            )
        console.print(table)

    prefs = state.learner.stats()
    console.print(
        f"Learned patterns: {prefs['learned_patterns']}  "
        f"overrides remembered: {prefs['total_overrides']}"
    )
    return 0


COMMANDS = {
    "analyze": cmd_analyze,
    "route": cmd_route,
    "stats": cmd_stats,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the smart-router command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    configure_logfire()

    console = Console()
    try:
        return COMMANDS[args.command](args, console)
    except RoutingError as e:
        console.print(f"[bold red]Routing failed:[/bold red] {e}")
        return 1
    except (OSError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        return 2


def main_entry() -> None:
    sys.exit(main())


if __name__ == "__main__":
    main_entry()
