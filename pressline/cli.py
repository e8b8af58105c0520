"""
Command-line interface for Pressline.

Usage:
    pressline init                      # Create directories, .env.example and the database
    pressline add-topic "FBAR basics"   # Add a candidate topic
    pressline run content               # Start a pipeline run
    pressline advance RUN_ID            # Resume or retry a run
    pressline resolve APPROVAL_ID approved --responder U123
    pressline propose "too technical"   # Derive a topic from feedback
    pressline heal CONTENT_ID           # Heal one content piece
    pressline scan                      # List defective records
    pressline heal-all --defect low_seo # Heal every matching record
    pressline status                    # Recent runs
    pressline pending                   # Pending approvals
    pressline logs                      # Pipeline log tail
    pressline serve                     # Start the autopilot scheduler
"""

import asyncio
from functools import wraps
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .app import PipelineApp, build_app
from .errors import PipelineError
from .pipeline import Defect, HealReport, HealStatus, PipelineScheduler
from .pipeline.scheduler import run_scheduler_forever
from .settings import configure_logging, load_settings
from .storage.models import LogLevel, PipelineKind, Priority, RunStatus, Topic, TopicStatus

app = typer.Typer(
    name="pressline",
    help="Bilingual content pipeline orchestrator",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    RunStatus.RUNNING: "yellow",
    RunStatus.COMPLETED: "green",
    RunStatus.FAILED: "red",
}

LEVEL_STYLES = {
    LogLevel.INFO: "white",
    LogLevel.WARN: "yellow",
    LogLevel.ERROR: "red",
    LogLevel.SUCCESS: "green",
    LogLevel.AGENT: "magenta",
}

HEAL_STYLES = {
    HealStatus.HEALED: "green",
    HealStatus.ALREADY_OK: "cyan",
    HealStatus.FAILED: "red",
    HealStatus.SKIPPED: "yellow",
}


async def _open_app() -> PipelineApp:
    settings = load_settings()
    configure_logging(settings.log_level)
    return await build_app(settings)


def with_app(func):
    """Run an async command body with a wired app, reporting pipeline errors."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        async def _main():
            pipeline_app = await _open_app()
            try:
                await func(pipeline_app, *args, **kwargs)
            finally:
                await pipeline_app.close()

        try:
            asyncio.run(_main())
        except PipelineError as e:
            console.print(f"[red]✗[/red] {escape(str(e))}")
            raise typer.Exit(code=1)

    return wrapper


async def _print_run(pipeline_app: PipelineApp, run_id: str) -> None:
    run = await pipeline_app.store.get_pipeline_run(run_id)
    if run is None:
        console.print(f"[red]✗[/red] Run {run_id} not found")
        return

    style = STATUS_STYLES[run.status]
    console.print(f"[bold]{run.id}[/bold] ({run.kind.value}) [{style}]{run.status.value}[/{style}] at {run.current_stage}")
    if run.stages_completed:
        console.print(f"  completed: {' → '.join(run.stages_completed)}")
    if run.stages_failed:
        console.print(f"  [red]failed:[/red] {', '.join(run.stages_failed)}")
    if run.logs:
        console.print(f"  last: {escape(run.logs[-1].message)}")


def _print_heal_report(report: HealReport) -> None:
    table = Table(title="Data Auto-Healer")
    table.add_column("Content", style="cyan")
    table.add_column("Topic")
    table.add_column("Defects")
    table.add_column("Outcome")

    outcomes = {outcome.content_id: outcome for outcome in report.outcomes}
    for finding in report.findings:
        outcome = outcomes.get(finding.content_id)
        cell = ""
        if outcome:
            style = HEAL_STYLES[outcome.status]
            cell = f"[{style}]{outcome.status.value}[/{style}] {escape(outcome.message)}"
        table.add_row(
            finding.content_id,
            finding.topic_id,
            ", ".join(d.value for d in finding.defects),
            cell,
        )

    console.print(table)
    console.print(report.summary)


@app.command("add-topic")
def add_topic(
    title_en: str = typer.Argument(..., help="English title"),
    title_he: str = typer.Option("", "--he", help="Hebrew title"),
    keywords: Optional[list[str]] = typer.Option(None, "--keyword", "-k", help="Keyword (repeatable)"),
    priority: Priority = typer.Option(Priority.MEDIUM, "--priority", "-p"),
    approved: bool = typer.Option(False, "--approved", help="Mark the topic approved"),
):
    """Add a candidate topic."""

    @with_app
    async def _add(pipeline_app: PipelineApp):
        topic = Topic(
            title_en=title_en,
            title_he=title_he,
            keywords=keywords or [],
            priority=priority,
            status=TopicStatus.APPROVED if approved else TopicStatus.PROPOSED,
        )
        await pipeline_app.store.put_topic(topic)
        console.print(f"[green]✓[/green] Added topic {topic.id}: {topic.display_title}")

    _add()


@app.command()
def run(
    kind: PipelineKind = typer.Argument(PipelineKind.CONTENT, help="Pipeline kind"),
    topic_id: Optional[str] = typer.Option(None, "--topic", "-t", help="Topic to run (content only)"),
):
    """Start a pipeline run and drive it until it completes, suspends or fails."""

    @with_app
    async def _run(pipeline_app: PipelineApp):
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Running {kind.value} pipeline...", total=None)
            run_id = await pipeline_app.orchestrator.run(kind, topic_id=topic_id)
        await _print_run(pipeline_app, run_id)

    _run()


@app.command()
def advance(run_id: str = typer.Argument(..., help="Run to resume or retry")):
    """Resume a running run, or retry a failed one as a new run."""

    @with_app
    async def _advance(pipeline_app: PipelineApp):
        outcome = await pipeline_app.orchestrator.advance(run_id)
        if outcome.run_id != run_id:
            console.print(f"[cyan]Retried as {outcome.run_id}[/cyan]")
        await _print_run(pipeline_app, outcome.run_id)

    _advance()


@app.command()
def resolve(
    approval_id: str = typer.Argument(..., help="Approval to resolve"),
    decision: str = typer.Argument(..., help="approved, rejected or changes_requested"),
    responder: str = typer.Option(..., "--responder", "-r", help="Approver identity"),
    feedback: Optional[str] = typer.Option(None, "--feedback", "-f", help="Reviewer feedback"),
):
    """Record a reviewer decision."""

    @with_app
    async def _resolve(pipeline_app: PipelineApp):
        approval = await pipeline_app.approvals.resolve(approval_id, decision, responder, feedback=feedback)
        console.print(f"[green]✓[/green] {approval.id} {approval.status.value}")
        if approval.run_id:
            await _print_run(pipeline_app, approval.run_id)

    _resolve()


@app.command()
def propose(
    feedback: str = typer.Argument(..., help="Reviewer feedback"),
    source_topic_id: Optional[str] = typer.Option(None, "--from", help="Topic the feedback was about"),
):
    """Propose a new topic derived from reviewer feedback."""

    @with_app
    async def _propose(pipeline_app: PipelineApp):
        topic = await pipeline_app.orchestrator.propose_with_feedback(feedback, source_topic_id)
        console.print(f"[green]✓[/green] Proposed {topic.id}: {topic.display_title}")
        console.print(f"  keywords: {', '.join(topic.keywords)}")

    _propose()


@app.command()
def heal(
    content_id: str = typer.Argument(..., help="Content piece to heal"),
    defect: Optional[Defect] = typer.Option(None, "--defect", "-d"),
):
    """Heal one content piece."""

    @with_app
    async def _heal(pipeline_app: PipelineApp):
        outcome = await pipeline_app.orchestrator.heal(content_id, defect)
        style = HEAL_STYLES[outcome.status]
        label = outcome.defect.value if outcome.defect else "no defect"
        console.print(f"[{style}]{outcome.status.value}[/{style}] {content_id} ({label}) {escape(outcome.message)}")

    _heal()


@app.command()
def scan(limit: Optional[int] = typer.Option(None, "--limit", "-n")):
    """List recent content pieces that need healing."""

    @with_app
    async def _scan(pipeline_app: PipelineApp):
        _print_heal_report(await pipeline_app.healer.scan(limit))

    _scan()


@app.command("heal-all")
def heal_all(
    defect: Optional[Defect] = typer.Option(None, "--defect", "-d"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
):
    """Heal every scanned record matching a defect."""

    @with_app
    async def _heal_all(pipeline_app: PipelineApp):
        _print_heal_report(await pipeline_app.healer.heal_all(defect, limit))

    _heal_all()


@app.command()
def status(limit: int = typer.Option(20, "--limit", "-n")):
    """Show recent pipeline runs."""

    @with_app
    async def _status(pipeline_app: PipelineApp):
        runs = await pipeline_app.store.list_pipeline_runs(limit=limit)

        table = Table(title="Pipeline Runs")
        table.add_column("Run", style="cyan")
        table.add_column("Kind")
        table.add_column("Status")
        table.add_column("Stage")
        table.add_column("Topic")
        table.add_column("Started")

        for run in runs:
            style = STATUS_STYLES[run.status]
            table.add_row(
                run.id,
                run.kind.value,
                f"[{style}]{run.status.value}[/{style}]",
                run.current_stage,
                run.topic_id or "",
                run.started_at.strftime("%Y-%m-%d %H:%M"),
            )

        console.print(table)

    _status()


@app.command()
def pending():
    """Show approvals awaiting a decision."""

    @with_app
    async def _pending(pipeline_app: PipelineApp):
        approvals = await pipeline_app.store.list_pending_approvals()

        table = Table(title="Pending Approvals")
        table.add_column("Approval", style="cyan")
        table.add_column("Type")
        table.add_column("Title")
        table.add_column("Run")
        table.add_column("Requested")

        for approval in approvals:
            table.add_row(
                approval.id,
                approval.type.value,
                approval.title,
                approval.run_id or "",
                approval.created_at.strftime("%Y-%m-%d %H:%M"),
            )

        console.print(table)

    _pending()


@app.command()
def logs(
    topic_id: Optional[str] = typer.Option(None, "--topic", "-t"),
    limit: int = typer.Option(50, "--limit", "-n"),
):
    """Show the pipeline log, most recent first."""

    @with_app
    async def _logs(pipeline_app: PipelineApp):
        for entry in await pipeline_app.log.query(topic_id=topic_id, limit=limit):
            style = LEVEL_STYLES[entry.level]
            console.print(
                f"[dim]{entry.timestamp:%Y-%m-%d %H:%M:%S}[/dim] "
                f"[{style}]{entry.level.value:<7}[/{style}] {escape(entry.message)}"
            )

    _logs()


@app.command()
def serve(
    hour: int = typer.Option(9, "--hour", help="Hour for scheduled pipelines (0-23)"),
    healer_interval: int = typer.Option(24, "--healer-interval", help="Healer interval in hours"),
    timezone: str = typer.Option("Asia/Jerusalem", "--tz", help="Scheduler timezone"),
):
    """Start the autopilot scheduler."""

    @with_app
    async def _serve(pipeline_app: PipelineApp):
        scheduler = PipelineScheduler(
            pipeline_app.orchestrator,
            pipeline_app.healer,
            run_hour=hour,
            healer_interval_hours=healer_interval,
            timezone=timezone,
        )

        console.print("[bold]Starting Pressline scheduler...[/bold]")
        console.print(f"  Content: Mon/Thu {hour:02d}:00, SEO: Tue/Fri, Podcast: Wed ({timezone})")
        console.print(f"  Healer: every {healer_interval} hours")
        console.print("\nPress Ctrl+C to stop\n")

        await run_scheduler_forever(scheduler)

    try:
        _serve()
    except KeyboardInterrupt:
        console.print("\n[yellow]Scheduler stopped[/yellow]")


@app.command()
def init():
    """Initialize the project with example configuration and an empty database."""
    dirs = ["data", "output/audio"]
    for d in dirs:
        Path(d).mkdir(parents=True, exist_ok=True)
        console.print(f"[green]✓[/green] Created {d}/")

    env_example = """# Pressline Configuration
# Copy to .env and fill in your values

# Pipeline tuning
PIPELINE_LOW_SEO_THRESHOLD=80
PIPELINE_STUCK_DRAFT_HOURS=24
PIPELINE_TOPIC_COOLDOWN_DAYS=30

# Storage
STORAGE_DB_PATH=data/pressline.db

# WordPress (application password)
WP_BASE_URL=https://tax4us.co.il/wp-json/wp/v2
WP_USERNAME=
WP_APP_PASSWORD=

# Slack approvals
SLACK_BOT_TOKEN=
SLACK_SIGNING_SECRET=
SLACK_APPROVAL_CHANNEL=
SLACK_APPROVER_IDS=[]

# LLM via OpenRouter
LLM_API_KEY=
LLM_ARTICLE_MODEL=anthropic/claude-3.5-sonnet

# ElevenLabs narration
TTS_ELEVENLABS_API_KEY=
TTS_VOICE_ID=Rachel

# Kie.ai images and video
KIE_API_KEY=

# Captivate.fm podcast hosting
CAPTIVATE_API_KEY=
CAPTIVATE_SHOW_ID=

# Shared secret for external triggers
TRIGGER_TOKEN=
"""

    env_path = Path(".env.example")
    if not env_path.exists():
        env_path.write_text(env_example)
        console.print("[green]✓[/green] Created .env.example")

    async def _init_db():
        settings = load_settings()
        pipeline_app = await build_app(settings)
        await pipeline_app.close()
        console.print(f"[green]✓[/green] Initialized database {settings.storage.db_path}")

    asyncio.run(_init_db())

    console.print("\n[bold]Next steps:[/bold]")
    console.print("1. Copy .env.example to .env and fill in your credentials")
    console.print("2. Add a topic: pressline add-topic \"FBAR filing for Israeli residents\" -k fbar")
    console.print("3. Run the content pipeline: pressline run content")


def main():
    app()


if __name__ == "__main__":
    main()
