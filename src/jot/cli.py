"""CLI entry point for jot."""

import asyncio
from pathlib import Path

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from .config import load_config, DEFAULT_CONFIG
from .errors import JotError
from .logging_config import configure_logging, configure_ops_log

console = Console()


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """jot - Group quick notes into topics as you write them."""
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _get_config(ctx) -> dict:
    return load_config(ctx.obj.get("config_path"))


def _get_service(ctx):
    from .service import ClassificationService

    return ClassificationService.from_config(_get_config(ctx))


def _run(service, coro):
    """Run coro on a fresh loop and release the provider afterwards."""
    async def runner():
        try:
            return await coro
        finally:
            await service.close()

    return asyncio.run(runner())


def _progress() -> Progress:
    return Progress(
        TextColumn("[blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
    )


@cli.command()
@click.option("--path", default=None, help="Custom data path")
def init(path):
    """Initialize the jot data directory and configuration."""
    import yaml

    base = Path(path).expanduser().resolve() if path else Path("~/.jot").expanduser()
    console.print(f"[bold green]Initializing jot at {base}[/]")

    for d in ["data", "chroma"]:
        (base / d).mkdir(parents=True, exist_ok=True)

    config_file = base / "config.yaml"
    if not config_file.exists():
        cfg = {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULT_CONFIG.items()}
        cfg["data_path"] = str(base / "data")
        cfg["chroma_path"] = str(base / "chroma")
        cfg["notes_path"] = str(base / "notes.json")
        header = (
            "# Claude API key for topic previews (or set ANTHROPIC_API_KEY env var)\n"
            "# claude_api_key: sk-ant-your-key-here\n\n"
            "# Embedding provider: sentence_transformers (local) or dashscope (set DASHSCOPE_API_KEY)\n\n"
        )
        config_file.write_text(header + yaml.dump(cfg, default_flow_style=False, sort_keys=False))
        console.print(f"  Created config: {config_file}")

    console.print("[bold green]✓ jot initialized![/]")
    console.print(f"  Notes file: {base / 'notes.json'}")
    console.print("  Run: jot watch")


@cli.command()
@click.argument("note_ids", nargs=-1, required=True)
@click.pass_context
def classify(ctx, note_ids):
    """Queue notes for classification and process the queue."""
    service = _get_service(ctx)
    for note_id in note_ids:
        if not service.queue.enqueue(note_id):
            console.print(f"  [dim]{note_id} already queued[/]")

    processed = _run(service, service.process_queue())
    console.print(f"[green]✓ Processed {processed} task(s)[/]")
    _print_failed_tasks(service, note_ids)


def _print_failed_tasks(service, note_ids=None):
    failed = [
        t for t in service.queue.tasks()
        if t.status.value == "error" and (note_ids is None or t.note_id in note_ids)
    ]
    for task in failed:
        console.print(f"  [red]✗ {task.note_id}: {task.error}[/]")


@cli.command()
@click.pass_context
def process(ctx):
    """Process pending classification tasks."""
    service = _get_service(ctx)
    pending = service.queue.stats().pending
    if not pending:
        console.print("[yellow]Queue is empty.[/]")
        return

    console.print(f"[blue]Processing {pending} pending task(s)...[/]")
    processed = _run(service, service.process_queue())
    console.print(f"[green]✓ Processed {processed} task(s)[/]")


@cli.command()
@click.pass_context
def status(ctx):
    """Show queue, cluster and embedding statistics."""
    service = _get_service(ctx)
    s = service.get_classification_status()

    console.print("\n[bold]Classification status[/]")
    console.print(f"  Worker: {'processing' if s['is_processing'] else 'idle'}")
    q = s["queue"]
    console.print(
        f"  Queue: {q['total']} task(s) - {q['pending']} pending, "
        f"{q['processing']} processing, {q['done']} done, {q['error']} error"
    )
    console.print(f"  Clusters: {s['clusters']['count']} holding {s['clusters']['total_notes']} note(s)")
    console.print(f"  Embeddings: {s['embeddings']['count']}")

    task = service.get_task_state()
    if task.status.value != "idle":
        console.print(
            f"  Topic preview: {task.status.value}, "
            f"batch {min(task.current_batch + 1, task.total_batches)}/{task.total_batches}"
        )


@cli.command()
@click.pass_context
def clusters(ctx):
    """List clusters."""
    service = _get_service(ctx)
    found = service.list_clusters()
    if not found:
        console.print("[yellow]No clusters yet. Run 'jot reclassify' or 'jot watch'.[/]")
        return

    contents = {n.id: n.content for n in service.notes.load_notes()}
    table = Table(title="Clusters")
    table.add_column("#", style="dim", width=3)
    table.add_column("Name", style="cyan")
    table.add_column("Notes", justify="right", style="green")
    table.add_column("Sample", max_width=60)

    for i, c in enumerate(found, 1):
        sample = contents.get(c.note_ids[0], "")[:80].replace("\n", " ")
        table.add_row(str(i), c.name, str(c.size), sample)

    console.print(table)


@cli.command()
@click.argument("note_id")
@click.option("--n", "-n", default=5, help="Number of results")
@click.pass_context
def similar(ctx, note_id, n):
    """Show the notes closest to NOTE_ID."""
    service = _get_service(ctx)
    results = service.find_similar_notes(note_id, top_n=n)
    if not results:
        console.print(f"[yellow]No embedding for {note_id}. Classify it first.[/]")
        return

    contents = {note.id: note.content for note in service.notes.load_notes()}
    table = Table(title=f"Notes similar to {note_id}")
    table.add_column("#", style="dim", width=3)
    table.add_column("Note", style="cyan")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Preview", max_width=60)

    for i, r in enumerate(results, 1):
        preview = contents.get(r.note_id, "")[:80].replace("\n", " ")
        table.add_row(str(i), r.note_id, f"{r.similarity:.3f}", preview)

    console.print(table)


@cli.command()
@click.argument("note_id")
@click.pass_context
def forget(ctx, note_id):
    """Drop a deleted note's embedding and cluster memberships."""
    service = _get_service(ctx)
    if _run(service, service.cleanup_note_classification(note_id)):
        console.print(f"[green]✓ Forgot {note_id}[/]")
    else:
        console.print(f"[yellow]{note_id} was not classified.[/]")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reclassify(ctx, yes):
    """Rebuild every embedding and cluster from scratch."""
    from .events import ProgressChannel

    if not yes:
        click.confirm("This drops every existing cluster. Continue?", abort=True)

    service = _get_service(ctx)
    channel = ProgressChannel()

    with _progress() as progress:
        bar = progress.add_task("Reclassifying", total=None)
        channel.subscribe(lambda e: progress.update(
            bar, description=e.stage.capitalize(), completed=e.completed, total=e.total,
        ))
        result = _run(service, service.reclassify_all(channel))

    if not result.success:
        console.print(f"[red]✗ {result.error}[/]")
        return

    s = result.stats
    console.print(f"[green]✓ Reclassified {s.completed}/{s.total} note(s) into {s.clusters} cluster(s)[/]")
    if s.errors:
        console.print(f"  [yellow]{s.errors} note(s) could not be embedded[/]")


@cli.command()
@click.pass_context
def janitor(ctx):
    """Run maintenance: repair cluster records."""
    service = _get_service(ctx)
    console.print("[blue]Running janitor...[/]")
    stats = _run(service, service.run_janitor())

    console.print("[green]✓ Maintenance complete[/]")
    console.print(f"  Dangling references removed: {stats['dangling_removed']}")
    console.print(f"  Duplicate memberships removed: {stats['duplicates_removed']}")
    console.print(f"  Empty clusters removed: {stats['empty_removed']}")
    console.print(f"  Centroids updated: {stats['centroids_updated']}")
    for problem in stats["inconsistencies"]:
        console.print(f"  [dim]{problem}[/]")


@cli.command()
@click.option("--debounce", default=2.0, help="Seconds to wait after the last change before classifying")
@click.option("--sync/--no-sync", "initial_sync", default=False, help="Classify every note once on startup")
@click.pass_context
def watch(ctx, debounce, initial_sync):
    """Watch the notes file and classify notes as they change."""
    from .service import ClassificationService
    from .watcher import NoteWatcher

    config = _get_config(ctx)
    configure_ops_log(config["data_path"])
    service = ClassificationService.from_config(config)
    watcher = NoteWatcher(service, config["notes_path"], debounce=debounce)
    watcher.run(initial_sync=initial_sync)


@cli.group()
def preview():
    """Bulk topic preview: tag every note with Claude and group by tag."""


def _run_preview(ctx, method: str):
    from .events import ProgressChannel

    service = _get_service(ctx)
    channel = ProgressChannel()
    try:
        with _progress() as progress:
            bar = progress.add_task("Tagging notes", total=None)
            channel.subscribe(lambda e: progress.update(bar, completed=e.completed, total=e.total))
            state = _run(service, getattr(service, method)(progress=channel))
    except (JotError, ValueError) as e:
        console.print(f"[red]{e}[/]")
        return

    if state.status.value == "completed":
        console.print(f"[green]✓ Tagged {state.processed_notes} note(s) in {state.total_batches} batch(es)[/]")
        console.print("  Run: jot preview groups")
    elif state.status.value == "error":
        console.print(f"[red]✗ Failed at batch {state.current_batch + 1}: {state.error}[/]")
        console.print("  Run: jot preview retry")
    else:
        console.print(f"[yellow]Task {state.status.value} at batch {state.current_batch + 1}[/]")


@preview.command()
@click.pass_context
def start(ctx):
    """Tag all notes in batches (resumes a paused or interrupted run)."""
    _run_preview(ctx, "start_classification_task")


@preview.command()
@click.pass_context
def retry(ctx):
    """Resume a failed or paused run from where it stopped."""
    _run_preview(ctx, "retry_task")


@preview.command()
@click.pass_context
def clear(ctx):
    """Forget task progress and cached results."""
    service = _get_service(ctx)
    try:
        service.clear_task()
    except JotError as e:
        console.print(f"[red]{e}[/]")
        return
    console.print("[green]✓ Cleared classification task[/]")


@preview.command()
@click.pass_context
def groups(ctx):
    """Show proposed topic groups from the cached results."""
    service = _get_service(ctx)
    topics = service.merge_and_group_results()

    if not topics:
        console.print("[yellow]No cached results. Run 'jot preview start' first.[/]")
        return

    table = Table(title="Proposed topics")
    table.add_column("Topic", style="cyan")
    table.add_column("Notes", justify="right", style="green")
    table.add_column("Examples", max_width=70)
    for topic in topics:
        examples = "; ".join(n.preview[:30].replace("\n", " ") for n in topic.notes[:3])
        table.add_row(topic.title, str(topic.count), examples)

    console.print(table)


if __name__ == "__main__":
    cli()
