"""Dexter CLI: turn plain requests into reviewed shell commands.

Usage:
    dexter "convert talk.mov to mp4"      # shorthand for run
    dexter run "merge a.pdf and b.pdf"    # route, confirm, execute
    dexter setup                          # providers, models, fallback order
    dexter plugins                        # list plugins and install status
    dexter check "<command>"              # safety verdict for a command line
    dexter history                        # recent commands, pinned first
    dexter history --pinned               # pinned commands only
    dexter pin <n> / dexter unpin <n>     # pin by history number
    dexter config                         # show configuration
"""

from __future__ import annotations

import asyncio
import json
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from dexter.config import DEXTER_CONFIG, DexterConfig, ensure_dexter_home
from dexter.errors import ConfigPersistFailed, DexterError, ProcessSpawnError
from dexter.history import HistoryStore
from dexter.logs import configure_logging
from dexter.plugins.registry import default_registry
from dexter.redaction import truncate_with_notice
from dexter.safety import SafetyValidator
from dexter.session import CopilotSession, RequestResult, RequestStatus
from dexter.wizard import SetupWizard, WizardError, WizardStep

console = Console()

MAX_CLARIFY_ROUNDS = 3
OUTPUT_PREVIEW_CHARS = 4000


def _run_async(coro):
    """Run async function from sync context."""
    return asyncio.run(coro)


class DexterCLI(click.Group):
    """Custom group that routes unknown commands as requests."""

    def parse_args(self, ctx, args):
        """If first arg isn't a known command, treat all args as a 'run' request."""
        if args and args[0] not in self.commands and not args[0].startswith("-"):
            args = ["run"] + args
        return super().parse_args(ctx, args)


@click.group(cls=DexterCLI)
@click.option("--verbose", "-v", is_flag=True, help="Also log to stderr")
@click.pass_context
def cli(ctx, verbose):
    """Dexter: a terminal copilot that asks before it runs anything.

    Describe what you want:
        dexter "rename photo1.jpeg to photo1.jpg"
    """
    ensure_dexter_home()
    configure_logging(verbose)
    ctx.ensure_object(dict)


# --- Requests ---


@cli.command()
@click.argument("request", nargs=-1, required=True)
def run(request):
    """Route a request to a plugin, show the command, run it if approved."""
    utterance = " ".join(request)
    config = DexterConfig.load()
    if not config.enabled_chain():
        console.print("[bold red]No enabled models are configured.[/] Run: [bold]dexter setup[/]")
        sys.exit(1)

    session = CopilotSession(DexterConfig.load, history=HistoryStore())
    console.print(f"\n[bold blue]Dexter[/]: [italic]{utterance}[/]")

    try:
        result = _run_async(session.handle(utterance, _confirm, _progress))
        for _ in range(MAX_CLARIFY_ROUNDS):
            if result.status is not RequestStatus.CLARIFY:
                break
            follow_up = _ask_clarification(result)
            if follow_up is None:
                console.print("[dim]Cancelled.[/]")
                sys.exit(1)
            result = _run_async(session.handle(follow_up, _confirm, _progress))
    except ProcessSpawnError as e:
        console.print(f"[bold red]Could not start process:[/] {e}")
        sys.exit(3)

    sys.exit(_report(result))


def _progress(event_type: str, data: dict):
    if event_type == "routing":
        console.print("[dim]Routing...[/]")
    elif event_type == "routed":
        console.print(f"[dim]  -> {data['plugin']}[/]")
    elif event_type == "verdict" and not data["allowed"]:
        console.print(f"[dim]  safety: {data['reason']}[/]")


def _confirm(record) -> bool:
    body = f"[bold]{record.command}[/]\n[dim]{record.summary}[/]\n[dim]in {record.cwd}[/]"
    console.print(Panel(body, title="Proposed command", border_style="yellow"))
    return click.confirm("Run this command?", default=False)


def _ask_clarification(result: RequestResult) -> str | None:
    clarify = result.clarification
    console.print(f"\n[bold yellow]?[/] {clarify.question}")
    if clarify.options:
        for i, option in enumerate(clarify.options, 1):
            console.print(f"  {i}. {option.label}")
        choice = click.prompt("Choose (0 to cancel)", type=click.IntRange(0, len(clarify.options)), default=0)
        if choice == 0:
            return None
        return clarify.options[choice - 1].resolved_intent
    answer = click.prompt("Answer (empty to cancel)", default="", show_default=False).strip()
    if not answer:
        return None
    return f"{result.utterance}\nClarification: {answer}"


def _report(result: RequestResult) -> int:
    """Print the result. Returns the process exit code."""
    status = result.status
    record = result.record

    if status is RequestStatus.SUCCEEDED:
        console.print(f"[bold green]Succeeded[/] (exit 0, {record.duration:.1f}s)")
        _print_output(record.output)
        return 0
    if status is RequestStatus.FAILED:
        console.print(f"[bold red]Failed[/] with exit code {record.exit_code}")
        _print_output(record.output)
        return record.exit_code if 0 < record.exit_code < 256 else 1
    if status is RequestStatus.CANCELLED:
        console.print("[dim]Cancelled. Nothing was run.[/]")
        return 1
    if status is RequestStatus.REFUSED:
        console.print(Panel(
            f"[bold]{result.candidate.text}[/]\n\n{result.error.user_message()}",
            title="Refused", border_style="red",
        ))
        return 2
    if status is RequestStatus.CLARIFY:
        console.print("[yellow]Still unclear after several questions; nothing was run.[/]")
        return 1

    message = result.error.user_message() if result.error else status.value
    console.print(f"[bold red]{_label(result.error)}:[/] {message}")
    return 1


def _label(error: DexterError | None) -> str:
    return (error.label if error else "error").capitalize()


def _print_output(output: str):
    output = output.rstrip()
    if not output:
        return
    preview = Text(truncate_with_notice(output, OUTPUT_PREVIEW_CHARS))
    console.print(Panel(preview, title="Output", border_style="dim"))


@cli.command()
@click.argument("command_text")
def check(command_text):
    """Show the safety verdict for a literal command line."""
    verdict = SafetyValidator().check(command_text)
    if verdict.allowed:
        console.print("[bold green]Allow[/]")
        return
    console.print(f"[bold red]Deny[/] ({verdict.category.value}): {verdict.reason}")
    sys.exit(1)


# --- Plugins ---


@cli.command()
def plugins():
    """List plugins and whether their tools are installed."""
    table = Table(title="Plugins")
    table.add_column("ID", style="cyan")
    table.add_column("Tool")
    table.add_column("Installed")
    table.add_column("Description")
    for plugin in default_registry():
        installed = "[green]yes[/]" if plugin.is_installed() else f"[red]no[/] [dim]{plugin.install_hint}[/]"
        table.add_row(plugin.id, plugin.program, installed, plugin.description)
    console.print(table)


# --- History ---


@cli.command()
@click.option("--pinned", is_flag=True, help="Only pinned commands")
@click.option("--limit", "-n", default=20, help="Number of entries")
def history(pinned, limit):
    """Show recent commands, pinned first."""
    items = HistoryStore().merged_items()
    if pinned:
        items = [item for item in items if item.pinned]
    if not items:
        console.print("[dim]No history yet.[/]")
        return

    table = Table(title="History")
    table.add_column("#", style="dim")
    table.add_column("")
    table.add_column("When")
    table.add_column("Plugin", style="cyan")
    table.add_column("Command")
    table.add_column("Outcome")
    for i, item in enumerate(items[:limit], 1):
        entry = item.entry
        table.add_row(
            str(i), "*" if item.pinned else "", entry.timestamp, entry.plugin, entry.command, entry.outcome
        )
    console.print(table)


def _history_item(number: int):
    items = HistoryStore().merged_items()
    if not 1 <= number <= len(items):
        console.print(f"[red]No history entry #{number}[/] (have {len(items)})")
        sys.exit(1)
    return items[number - 1]


@cli.command()
@click.argument("number", type=int)
def pin(number):
    """Pin a history entry by its number in `dexter history`."""
    item = _history_item(number)
    HistoryStore().set_pin(item.entry)
    console.print(f"Pinned: [bold]{item.entry.command}[/]")


@cli.command()
@click.argument("number", type=int)
def unpin(number):
    """Unpin a history entry by its number in `dexter history`."""
    item = _history_item(number)
    HistoryStore().unset_pin(item.entry)
    console.print(f"Unpinned: [bold]{item.entry.command}[/]")


# --- Configuration ---


@cli.command()
def config():
    """Show the configuration (credentials masked). Change it with `dexter setup`."""
    cfg = DexterConfig.load()
    data = cfg.to_dict()
    for provider in data["providers"]:
        key = provider.get("api_key", "")
        if key and not key.startswith("env:"):
            provider["api_key"] = key[:4] + "..." if len(key) > 8 else "***"
    console.print(f"[dim]{DEXTER_CONFIG}[/]")
    console.print_json(json.dumps(data))


@cli.command()
def setup():
    """Choose providers and models and set the fallback order."""
    wizard = SetupWizard(DexterConfig.load())
    console.print(Panel(
        "Enter continues, [bold]b[/] goes back, [bold]x[/] returns to provider selection.",
        title="Dexter setup", border_style="blue",
    ))
    steps = {
        WizardStep.PROVIDERS_TOGGLE: _setup_providers,
        WizardStep.PROVIDER_CONFIG: _setup_credentials,
        WizardStep.MODELS_TOGGLE: _setup_models,
        WizardStep.MODELS_CONFIRM_FALLBACK: _setup_order,
    }
    while wizard.is_open:
        try:
            steps[wizard.step](wizard)
        except WizardError as e:
            console.print(f"[red]{e}[/]")
        except ConfigPersistFailed as e:
            console.print(f"[bold red]Could not save:[/] {e}. Previous configuration kept.")

    if wizard.step is WizardStep.SAVED:
        console.print(f"[bold green]Saved[/] to {DEXTER_CONFIG}")
    else:
        console.print("[dim]Setup closed without saving.[/]")


def _navigate(wizard: SetupWizard, answer: str) -> bool:
    """Handle the shared b/x keys. Returns True if the answer was consumed."""
    if answer == "b":
        wizard.back()
        return True
    if answer == "x":
        wizard.escape()
        return True
    return False


def _setup_providers(wizard: SetupWizard):
    table = Table(title="Providers")
    table.add_column("#", style="dim")
    table.add_column("Provider", style="cyan")
    table.add_column("Enabled")
    for i, provider in enumerate(wizard.providers, 1):
        table.add_row(str(i), provider.display_name, "[green]on[/]" if provider.enabled else "[dim]off[/]")
    console.print(table)
    answer = click.prompt("Toggle # (Enter to continue, x to quit)", default="", show_default=False).strip().lower()
    if not answer:
        wizard.next()
    elif answer in ("x", "b", "q"):
        wizard.escape()
    elif answer.isdigit() and 1 <= int(answer) <= len(wizard.providers):
        wizard.toggle_provider(wizard.providers[int(answer) - 1].id)
    else:
        console.print(f"[red]Unknown choice: {answer}[/]")


def _setup_credentials(wizard: SetupWizard):
    for provider in wizard.enabled_providers():
        if not provider.effective_base_url():
            url = click.prompt(f"{provider.display_name} base URL", default="", show_default=False)
            wizard.set_base_url(provider.id, url)
        if provider.requires_credential() and not provider.resolve_api_key():
            key = click.prompt(
                f"{provider.display_name} API key (or env:VAR_NAME)",
                default="", show_default=False, hide_input=True,
            )
            wizard.set_credential(provider.id, key)
    answer = click.prompt(
        "Enter to continue, d to discover models, b back, x restart", default="", show_default=False
    ).strip().lower()
    if _navigate(wizard, answer):
        return
    if answer == "d":
        for provider in wizard.enabled_providers():
            models = _run_async(wizard.discover_models(provider.id))
            console.print(f"[dim]{provider.display_name}: {len(models)} model(s)[/]")
        return
    wizard.next()


def _setup_models(wizard: SetupWizard):
    visible = wizard.visible_models()
    table = Table(title="Models")
    table.add_column("#", style="dim")
    table.add_column("Provider", style="cyan")
    table.add_column("Model")
    table.add_column("Selected")
    for i, (provider_id, name) in enumerate(visible, 1):
        mark = "[green]x[/]" if wizard.is_selected(provider_id, name) else ""
        table.add_row(str(i), provider_id, name, mark)
    console.print(table)
    answer = click.prompt(
        "Toggle # / a all / +provider:model to add (Enter to continue)", default="", show_default=False
    ).strip()
    if _navigate(wizard, answer.lower()):
        return
    if not answer:
        wizard.next()
    elif answer.lower() == "a":
        wizard.select_all()
    elif answer.startswith("+") and ":" in answer:
        provider_id, name = answer[1:].split(":", 1)
        wizard.add_model(provider_id.strip(), name)
    elif answer.isdigit() and 1 <= int(answer) <= len(visible):
        wizard.toggle_model(*visible[int(answer) - 1])
    else:
        console.print(f"[red]Unknown choice: {answer}[/]")


def _setup_order(wizard: SetupWizard):
    order = wizard.fallback_order()
    table = Table(title="Fallback order")
    table.add_column("Rank", style="dim")
    table.add_column("Provider", style="cyan")
    table.add_column("Model")
    for entry in order:
        table.add_row(str(entry.rank), entry.provider, entry.name)
    console.print(table)
    answer = click.prompt(
        "u N / d N to move rank N up or down, Enter to save", default="", show_default=False
    ).strip().lower()
    if _navigate(wizard, answer):
        return
    if not answer:
        wizard.save()
        return
    parts = answer.split()
    if len(parts) == 2 and parts[0] in ("u", "d") and parts[1].isdigit() and 1 <= int(parts[1]) <= len(order):
        key = order[int(parts[1]) - 1].key
        if parts[0] == "u":
            wizard.move_up(key)
        else:
            wizard.move_down(key)
    else:
        console.print(f"[red]Unknown choice: {answer}[/]")


if __name__ == "__main__":
    cli()
