"""
Command line entry point for the agent orchestrator.
Uses Rich and Typer for the terminal interface.
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.markdown import Markdown
from rich import box

from agent_orchestrator.exceptions import AuthorizationError, OrchestratorError, ValidationError
from agent_orchestrator.models import AuthContext, OrchestratorRequest, OrchestratorResponse, RequestOptions
from agent_orchestrator.system import AgentOrchestratorSystem

# Initialize Rich console and Typer app
console = Console()
app = typer.Typer(
    name="agent-orchestrator",
    help="🤖 Capability-routed agent orchestrator with Ollama and AWS Bedrock failover",
    add_completion=False,
    rich_markup_mode="rich"
)

CONFIG_OPTION = typer.Option("config.yaml", "--config", "-c", help="Path to configuration file")


def load_system(config: str) -> AgentOrchestratorSystem:
    """Create the system, exiting with a readable error when the config is unusable."""
    if not Path(config).exists():
        console.print(Panel(
            f"[red]❌ Configuration file not found: {config}[/red]\n\n[yellow]Please ensure the configuration file exists and is readable.[/yellow]",
            title="[bold red]Configuration Error[/bold red]",
            border_style="red"
        ))
        raise typer.Exit(1)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True
        ) as progress:
            task = progress.add_task("🚀 Initializing agent orchestrator...", total=None)
            system = AgentOrchestratorSystem(config)
            progress.update(task, completed=True)
        return system
    except OrchestratorError as e:
        console.print(Panel(
            f"[red]❌ Failed to initialize system: {e.message}[/red]\n\n[yellow]Please check your configuration and try again.[/yellow]",
            title="[bold red]Initialization Error[/bold red]",
            border_style="red"
        ))
        raise typer.Exit(1)


def format_response(response: OrchestratorResponse) -> None:
    """Render an orchestrator response."""
    if response.success:
        console.print(Panel(
            Markdown(response.response),
            title=f"[bold green]✅ Response ({response.agent} agent)[/bold green]",
            border_style="green",
            padding=(1, 2)
        ))
    else:
        console.print(Panel(
            f"[red]Error: {response.error or 'Unknown error'}[/red]\n\n{response.response}",
            title="[bold red]❌ Error[/bold red]",
            border_style="red",
            padding=(1, 2)
        ))

    details = Table(title="📊 Routing Details", box=box.SIMPLE)
    details.add_column("Detail", style="cyan")
    details.add_column("Value", style="white")
    details.add_row("Agent", f"[yellow]{response.routing.agent}[/yellow]")
    details.add_row("Confidence", f"[magenta]{response.routing.confidence:.2f}[/magenta]")
    details.add_row("Reasoning", response.routing.reasoning)
    details.add_row("Tools Used", f"[blue]{', '.join(response.tools_used) or 'none'}[/blue]")
    if response.requires_confirmation:
        details.add_row("Confirmation", "[bold yellow]⚠️ Destructive action, confirm before proceeding[/bold yellow]")
    if response.conversation_id:
        details.add_row("Conversation", response.conversation_id)

    console.print()
    console.print(details)


@app.command()
def ask(
    message: str = typer.Argument(..., help="Request to route to an agent"),
    org: str = typer.Option(..., "--org", "-o", help="Organization id"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session id"),
    conversation: Optional[str] = typer.Option(None, "--conversation", help="Existing conversation id"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="Active mode, e.g. plan_mode or script"),
    config: str = CONFIG_OPTION
):
    """
    💬 Route a single request and print the answer.
    """
    system = load_system(config)

    request = OrchestratorRequest(
        message=message,
        organization_id=org,
        user_id=user,
        project_id=project,
        session_id=session,
        conversation_id=conversation,
        context=RequestOptions(active_mode=mode) if mode else None
    )

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True
        ) as progress:
            task = progress.add_task("🔄 Processing your request...", total=None)
            response = asyncio.run(system.process_request(request, AuthContext(uid=user)))
            progress.update(task, completed=True)
    except (ValidationError, AuthorizationError) as e:
        console.print(Panel(f"[red]{e.message}[/red]", title="[bold red]Request Rejected[/bold red]",
                            border_style="red"))
        raise typer.Exit(2)

    format_response(response)
    if not response.success:
        raise typer.Exit(1)


@app.command()
def tools(config: str = CONFIG_OPTION):
    """
    🛠️ List registered tools and their capability tags.
    """
    system = load_system(config)
    descriptors = asyncio.run(system.tool_registry.list_tools())

    if not descriptors:
        console.print(Panel("[yellow]No tools registered. Add modules under tools.modules in the configuration.[/yellow]",
                            border_style="yellow"))
        return

    table = Table(title="🛠️ Registered Tools", box=box.ROUNDED)
    table.add_column("Tool", style="yellow")
    table.add_column("Capabilities", style="cyan")
    table.add_column("Source", style="green")
    table.add_column("Description", style="white")

    for descriptor in descriptors:
        info = system.tool_registry.get_tool_info(descriptor.name)
        table.add_row(info["name"], ", ".join(info["capabilities"]) or "-", info["source"], info["description"])

    console.print(table)


@app.command()
def info(config: str = CONFIG_OPTION):
    """
    🔧 Show agents, backends and routing configuration.
    """
    system = load_system(config)
    system_info = system.get_system_info()

    backends_table = Table(title="🔧 Backends", box=box.ROUNDED)
    backends_table.add_column("Role", style="cyan")
    backends_table.add_column("Backend", style="green")
    backends_table.add_column("Model", style="yellow")
    backends_table.add_column("Location", style="white")

    primary = system_info["backends"]["primary"]
    secondary = system_info["backends"]["secondary"]
    primary_role = "Primary (preferred)" if primary["preferred"] else "Primary"
    backends_table.add_row(primary_role, primary["name"], primary["model"], primary["base_url"])
    backends_table.add_row("Secondary", secondary["name"], secondary["model"], secondary["region"])

    agents_table = Table(title="🤖 Available Agents", box=box.ROUNDED)
    agents_table.add_column("Agent Type", style="cyan")
    agents_table.add_column("Name", style="green")
    for agent_type, agent_name in system_info["agents"].items():
        agents_table.add_row(agent_type.replace("_", " ").title(), agent_name)

    config_table = Table(title="⚙️ Routing", box=box.ROUNDED)
    config_table.add_column("Setting", style="cyan", width=22)
    config_table.add_column("Value", style="white")
    for key, value in system_info["config"].items():
        display = ", ".join(value) if isinstance(value, list) else str(value)
        config_table.add_row(key.replace("_", " ").title(), display)

    console.print(backends_table)
    console.print()
    console.print(agents_table)
    console.print()
    console.print(config_table)


if __name__ == "__main__":
    app()
