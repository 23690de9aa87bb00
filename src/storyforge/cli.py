"""CLI for editing stories and browsing their autosave history."""

import asyncio
import json
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import EditorSettings, configure_logging, get_story_dir
from .engine import StoryEngine, load_sample_stories
from .errors import FormatError
from .exchange import decode_shared_scene
from .models import Scene
from .timeutil import format_relative_time, parse_time_reference

console = Console()


@click.group()
@click.option(
    "--story-path",
    envvar="STORYFORGE_PATH",
    type=click.Path(path_type=Path),
    help="Path to story directory",
)
@click.pass_context
def cli(ctx, story_path):
    """StoryForge - branching story editor with autosave history."""
    ctx.ensure_object(dict)
    story_dir = story_path or get_story_dir()
    settings = EditorSettings.from_env()
    configure_logging(story_dir, settings.log_level)
    ctx.obj["story_dir"] = story_dir
    ctx.obj["settings"] = settings


def _get_engine(ctx: click.Context) -> StoryEngine:
    """Create engine instance from context; closed when the command ends."""
    engine = StoryEngine(ctx.obj["story_dir"], ctx.obj["settings"])
    ctx.call_on_close(engine.close)
    return engine


def _commit(engine: StoryEngine) -> None:
    """Capture the command's edits in history."""
    snapshot_id = engine.save_now()
    if snapshot_id:
        console.print(f"[dim]Saved snapshot {snapshot_id[-8:]}[/dim]")


def _resolve_scene(engine: StoryEngine, ref: str) -> Scene | None:
    """Find a scene by id or unique id prefix."""
    scene = engine.graph.get_scene(ref)
    if scene is not None:
        return scene
    matches = [s for sid, s in engine.graph.scenes.items() if sid.startswith(ref)]
    return matches[0] if len(matches) == 1 else None


def _require_scene(ctx: click.Context, engine: StoryEngine, ref: str) -> Scene:
    scene = _resolve_scene(engine, ref)
    if scene is None:
        console.print(f"[red]Scene not found:[/red] {escape(ref)}")
        ctx.exit(1)
    return scene


def _resolve_child(items, ref: str):
    for item in items:
        if item.id == ref:
            return item
    matches = [item for item in items if item.id.startswith(ref)]
    return matches[0] if len(matches) == 1 else None


def _scene_label(engine: StoryEngine, scene_id: str | None) -> str:
    if scene_id is None:
        return "[dim]unlinked[/dim]"
    scene = engine.graph.get_scene(scene_id)
    return escape(scene.title) if scene else f"[dim]{escape(scene_id)}[/dim]"


# --- Setup ---


@cli.command()
@click.option("--sample", help="Start from a bundled sample story")
@click.pass_context
def init(ctx, sample):
    """Initialize a story directory."""
    engine = _get_engine(ctx)
    if sample:
        if not engine.load_sample(sample):
            console.print(f"[red]Unknown sample:[/red] {escape(sample)}")
            ctx.exit(1)
        _commit(engine)
        console.print(f"[green]✓[/green] Loaded sample '{escape(engine.graph.metadata.title)}'")
    console.print(f"[green]✓[/green] Story directory ready at {ctx.obj['story_dir']}")


@cli.command()
def samples():
    """List bundled sample stories."""
    table = Table(title="Sample stories")
    table.add_column("Key", style="cyan")
    table.add_column("Title")
    table.add_column("Scenes", justify="right")
    for key, story in load_sample_stories().items():
        table.add_row(key, story["storyMetadata"]["title"], str(len(story["scenes"])))
    console.print(table)


# --- Scene commands ---


@cli.group()
def scene():
    """Create, edit and delete scenes."""
    pass


@scene.command("add")
@click.option("--title", help="Scene title")
@click.option("--text", help="Scene body text")
@click.option("--x", type=float, help="Horizontal position")
@click.option("--y", type=float, help="Vertical position")
@click.option(
    "--category",
    type=click.Choice(["narrative", "question", "information", "decision"]),
    help="Scene category",
)
@click.pass_context
def scene_add(ctx, title, text, x, y, category):
    """Add a scene. The first scene becomes the start scene."""
    engine = _get_engine(ctx)
    fields = {k: v for k, v in {"title": title, "text": text, "category": category}.items() if v is not None}
    created = engine.graph.create_scene(x, y, **fields)
    console.print(f"[green]✓[/green] Added scene [cyan]{created.id}[/cyan] \"{escape(created.title)}\"")
    _commit(engine)


@scene.command("edit")
@click.argument("scene_ref")
@click.option("--title", help="Scene title")
@click.option("--text", help="Scene body text")
@click.option("--x", type=float, help="Horizontal position")
@click.option("--y", type=float, help="Vertical position")
@click.option(
    "--category",
    type=click.Choice(["narrative", "question", "information", "decision"]),
    help="Scene category",
)
@click.option("--notes", help="Author notes")
@click.option("--read-time", type=int, help="Estimated reading time in minutes")
@click.option("--emoji", help="Use an emoji as the illustration")
@click.option("--image-url", help="Use a searched image URL as the illustration")
@click.option("--no-image", is_flag=True, help="Remove the illustration")
@click.pass_context
def scene_edit(ctx, scene_ref, title, text, x, y, category, notes, read_time, emoji, image_url, no_image):
    """Edit scene fields."""
    engine = _get_engine(ctx)
    target = _require_scene(ctx, engine, scene_ref)

    fields = {
        "title": title,
        "text": text,
        "x": x,
        "y": y,
        "category": category,
        "notes": notes,
        "estimated_read_time": read_time,
    }
    updates = {k: v for k, v in fields.items() if v is not None}
    if emoji:
        updates["image"] = {"kind": "emoji", "payload": emoji}
    elif image_url:
        updates["image"] = {"kind": "search", "payload": image_url}
    elif no_image:
        updates["image"] = None

    if not updates:
        console.print("[yellow]![/yellow] Nothing to change")
        return

    updated = engine.graph.update_scene(target.id, **updates)
    if updated is None:
        console.print(f"[red]Invalid values for scene:[/red] {escape(target.id)}")
        ctx.exit(1)
    console.print(f"[green]✓[/green] Updated \"{escape(updated.title)}\"")
    _commit(engine)


@scene.command("rm")
@click.argument("scene_ref")
@click.pass_context
def scene_rm(ctx, scene_ref):
    """Delete a scene; choices pointing at it become unlinked."""
    engine = _get_engine(ctx)
    target = _require_scene(ctx, engine, scene_ref)
    engine.graph.delete_scene(target.id)
    console.print(f"[green]✓[/green] Deleted \"{escape(target.title)}\"")
    _commit(engine)


@scene.command("start")
@click.argument("scene_ref")
@click.pass_context
def scene_start(ctx, scene_ref):
    """Make a scene the start scene."""
    engine = _get_engine(ctx)
    target = _require_scene(ctx, engine, scene_ref)
    engine.graph.set_start_scene(target.id)
    console.print(f"[green]✓[/green] Start scene is now \"{escape(target.title)}\"")
    _commit(engine)


@scene.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def scene_list(ctx, as_json):
    """List scenes."""
    engine = _get_engine(ctx)
    scenes = list(engine.graph.scenes.values())

    if as_json:
        console.print(json.dumps([s.to_summary() for s in scenes], indent=2))
        return
    if not scenes:
        console.print("[dim]No scenes[/dim]")
        return

    table = Table(title=escape(engine.graph.metadata.title))
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Category", style="green")
    table.add_column("Choices")
    for s in scenes:
        marker = " [yellow]★[/yellow]" if s.id == engine.graph.start_scene_id else ""
        choices = ", ".join(
            f"{escape(c.text)} → {_scene_label(engine, c.target)}" for c in s.choices
        )
        table.add_row(s.id, escape(s.title) + marker, s.category, choices or "[dim]ending[/dim]")
    console.print(table)


# --- Choice commands ---


@cli.group()
def choice():
    """Add, relink and remove choices."""
    pass


@choice.command("add")
@click.argument("scene_ref")
@click.option("--text", help="Choice label")
@click.option("--target", "target_ref", help="Scene the choice leads to")
@click.pass_context
def choice_add(ctx, scene_ref, text, target_ref):
    """Add a choice to a scene."""
    engine = _get_engine(ctx)
    source = _require_scene(ctx, engine, scene_ref)
    target = _require_scene(ctx, engine, target_ref) if target_ref else None

    created = engine.graph.add_choice(source.id, text=text, target=target.id if target else None)
    console.print(
        f"[green]✓[/green] Added choice [cyan]{created.id}[/cyan] "
        f"\"{escape(created.text)}\" → {_scene_label(engine, created.target)}"
    )
    _commit(engine)


@choice.command("edit")
@click.argument("scene_ref")
@click.argument("choice_ref")
@click.option("--text", help="Choice label")
@click.option("--target", "target_ref", help="Scene the choice leads to")
@click.option("--unlink", is_flag=True, help="Clear the target")
@click.pass_context
def choice_edit(ctx, scene_ref, choice_ref, text, target_ref, unlink):
    """Change a choice's label or target."""
    engine = _get_engine(ctx)
    source = _require_scene(ctx, engine, scene_ref)
    existing = _resolve_child(source.choices, choice_ref)
    if existing is None:
        console.print(f"[red]Choice not found:[/red] {escape(choice_ref)}")
        ctx.exit(1)

    kwargs = {}
    if text is not None:
        kwargs["text"] = text
    if unlink:
        kwargs["target"] = None
    elif target_ref:
        kwargs["target"] = _require_scene(ctx, engine, target_ref).id

    updated = engine.graph.update_choice(source.id, existing.id, **kwargs)
    console.print(
        f"[green]✓[/green] \"{escape(updated.text)}\" → {_scene_label(engine, updated.target)}"
    )
    _commit(engine)


@choice.command("rm")
@click.argument("scene_ref")
@click.argument("choice_ref")
@click.pass_context
def choice_rm(ctx, scene_ref, choice_ref):
    """Remove a choice."""
    engine = _get_engine(ctx)
    source = _require_scene(ctx, engine, scene_ref)
    existing = _resolve_child(source.choices, choice_ref)
    if existing is None:
        console.print(f"[red]Choice not found:[/red] {escape(choice_ref)}")
        ctx.exit(1)
    engine.graph.delete_choice(source.id, existing.id)
    console.print(f"[green]✓[/green] Removed choice \"{escape(existing.text)}\"")
    _commit(engine)


# --- Hint commands ---


@cli.group()
def hint():
    """Manage learning hints."""
    pass


@hint.command("add")
@click.argument("scene_ref")
@click.argument("text")
@click.pass_context
def hint_add(ctx, scene_ref, text):
    """Add a learning hint to a scene."""
    engine = _get_engine(ctx)
    source = _require_scene(ctx, engine, scene_ref)
    created = engine.graph.add_hint(source.id, text)
    console.print(f"[green]✓[/green] Added hint [cyan]{created.id}[/cyan]")
    _commit(engine)


@hint.command("rm")
@click.argument("scene_ref")
@click.argument("hint_ref")
@click.pass_context
def hint_rm(ctx, scene_ref, hint_ref):
    """Remove a learning hint."""
    engine = _get_engine(ctx)
    source = _require_scene(ctx, engine, scene_ref)
    existing = _resolve_child(source.hints, hint_ref)
    if existing is None:
        console.print(f"[red]Hint not found:[/red] {escape(hint_ref)}")
        ctx.exit(1)
    engine.graph.delete_hint(source.id, existing.id)
    console.print("[green]✓[/green] Removed hint")
    _commit(engine)


@cli.command()
@click.option("--title", help="Story title")
@click.option("--description", help="Story description")
@click.option("--subject", help="Subject area")
@click.option("--difficulty", help="Difficulty level")
@click.option("--objective", "objectives", multiple=True, help="Learning objective (repeatable)")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.pass_context
def meta(ctx, title, description, subject, difficulty, objectives, tags):
    """Show or update story settings."""
    engine = _get_engine(ctx)
    fields = {
        "title": title,
        "description": description,
        "subject": subject,
        "difficulty": difficulty,
    }
    updates = {k: v for k, v in fields.items() if v is not None}
    if objectives:
        updates["learning_objectives"] = list(objectives)
    if tags:
        updates["tags"] = list(tags)

    metadata = engine.graph.update_metadata(**updates)
    console.print(f"[bold]{escape(metadata.title)}[/bold]")
    console.print(f"  {escape(metadata.description)}")
    console.print(f"  Subject: {escape(metadata.subject)}  Difficulty: {escape(metadata.difficulty)}")
    for objective in metadata.learning_objectives:
        console.print(f"  • {escape(objective)}")
    if metadata.tags:
        console.print(f"  Tags: {escape(', '.join(metadata.tags))}")
    if updates:
        _commit(engine)


# --- Analysis and playback ---


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def analytics(ctx, as_json):
    """Show story statistics, complexity and path analysis."""
    engine = _get_engine(ctx)
    stats = engine.analytics()

    if as_json:
        console.print(json.dumps(stats.model_dump(exclude={"paths"}), indent=2))
        return

    console.print(f"[bold]{escape(engine.graph.metadata.title)}[/bold]")
    console.print(f"  Total scenes:          {stats.total_scenes}")
    console.print(f"  Total choices:         {stats.total_choices}")
    console.print(f"  Learning hints:        {stats.total_hints}")
    console.print(f"  Estimated read time:   {stats.estimated_reading_time} min")
    console.print()
    console.print("[bold]Scene types[/bold]")
    for category, count in stats.category_distribution.items():
        console.print(f"  {category.capitalize():<14} {count}")
    console.print()
    console.print("[bold]Complexity[/bold]")
    console.print(f"  Complexity score:      {stats.complexity_score}%")
    console.print(f"  Max choices per scene: {stats.max_choices}")
    console.print(f"  Average choices:       {stats.average_choices:.1f}")
    console.print()
    console.print("[bold]Paths[/bold]")
    console.print(f"  Possible story paths:  {stats.path_count}")
    console.print(f"  Average path length:   {stats.average_path_length:.1f}")


@cli.command()
@click.pass_context
def paths(ctx):
    """List every path from the start scene to an ending."""
    engine = _get_engine(ctx)
    found = engine.find_paths()
    if not found:
        console.print("[dim]No complete paths[/dim]")
        return
    for i, path in enumerate(found, 1):
        titles = " → ".join(_scene_label(engine, sid) for sid in path)
        console.print(f"{i:>3}. {titles}")


@cli.command()
@click.argument("scene_ref", required=False)
@click.pass_context
def play(ctx, scene_ref):
    """Preview a scene as a reader sees it (start scene by default)."""
    engine = _get_engine(ctx)
    scene_id = _require_scene(ctx, engine, scene_ref).id if scene_ref else None
    view = engine.preview(scene_id)
    if view is None:
        console.print("[dim]Nothing to play[/dim]")
        return

    if view.image and view.image.kind == "emoji":
        console.print(view.image.payload)
    console.print(f"[bold]{escape(view.title)}[/bold]")
    console.print(escape(view.text))
    for text in view.hints:
        console.print(f"  [yellow]hint:[/yellow] {escape(text)}")
    console.print()
    if view.is_ending:
        console.print("[dim]The End[/dim]")
    for i, c in enumerate(view.choices, 1):
        if c.linked:
            console.print(f"  {i}. {escape(c.text)} [dim]({c.target})[/dim]")
        else:
            console.print(f"  {i}. {escape(c.text)} [dim](unlinked)[/dim]")


# --- History commands ---


@cli.command()
@click.pass_context
def save(ctx):
    """Save a snapshot now if anything changed."""
    engine = _get_engine(ctx)
    snapshot_id = engine.save_now()
    if snapshot_id:
        console.print(f"[green]✓[/green] Saved snapshot {snapshot_id}")
    else:
        console.print("[dim]No changes since the last snapshot[/dim]")


@cli.command()
@click.option("--since", help="Only snapshots after this time (ISO, relative, or named)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def history(ctx, since, as_json):
    """List autosave snapshots, newest first."""
    engine = _get_engine(ctx)
    snapshots = engine.snapshots.list()

    if since:
        try:
            since_dt = parse_time_reference(since)
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            ctx.exit(1)
        snapshots = [s for s in snapshots if s.timestamp >= since_dt]

    snapshots = list(reversed(snapshots))
    if as_json:
        console.print(json.dumps([s.to_summary() for s in snapshots], indent=2))
        return
    if not snapshots:
        console.print("[dim]No snapshots yet[/dim]")
        return

    table = Table(title=f"Snapshots (up to {engine.snapshots.max_snapshots})")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Scenes", justify="right")
    table.add_column("Saved", style="dim")
    for s in snapshots:
        summary = s.to_summary()
        table.add_row(
            s.id,
            escape(s.title or "Scene snapshot"),
            str(summary["scenes"]),
            format_relative_time(s.timestamp),
        )
    console.print(table)

    last_saved = engine.snapshots.last_saved
    if last_saved:
        console.print(f"[dim]Last saved {format_relative_time(last_saved)}[/dim]")


def _print_move(result: dict) -> None:
    status = result["status"]
    messages = {
        "undone": "Undo",
        "redone": "Redo",
        "restored": "Snapshot restored",
    }
    if status in messages:
        console.print(f"[green]✓[/green] {messages[status]} → {escape(result.get('title') or 'Scene snapshot')}")
    elif status == "nothing_to_undo":
        console.print("[yellow]![/yellow] Nothing to undo")
    elif status == "nothing_to_redo":
        console.print("[yellow]![/yellow] Nothing to redo")
    elif status == "missing":
        console.print("[red]Redo failed:[/red] snapshot no longer in history")
    elif status == "not_found":
        console.print(f"[red]Snapshot not found:[/red] {escape(result['snapshot_id'])}")
    else:
        console.print(f"[red]Failed:[/red] {status}")


@cli.command()
@click.pass_context
def undo(ctx):
    """Step back to the previous distinct snapshot."""
    engine = _get_engine(ctx)
    _print_move(engine.undo())


@cli.command()
@click.pass_context
def redo(ctx):
    """Re-apply the state most recently undone."""
    engine = _get_engine(ctx)
    _print_move(engine.redo())


@cli.command()
@click.argument("snapshot_ref")
@click.pass_context
def restore(ctx, snapshot_ref):
    """Restore a snapshot by id or unique id prefix."""
    engine = _get_engine(ctx)
    snapshot = engine.snapshots.resolve(snapshot_ref)
    result = engine.restore(snapshot.id if snapshot else snapshot_ref)
    _print_move(result)
    if result["status"] != "restored":
        ctx.exit(1)


@cli.command()
@click.argument("snapshot_ref")
@click.pass_context
def forget(ctx, snapshot_ref):
    """Delete one snapshot from history."""
    engine = _get_engine(ctx)
    snapshot = engine.snapshots.resolve(snapshot_ref)
    if snapshot is None or not engine.delete_snapshot(snapshot.id):
        console.print(f"[red]Snapshot not found:[/red] {escape(snapshot_ref)}")
        ctx.exit(1)
    console.print(f"[green]✓[/green] Deleted snapshot {snapshot.id}")


@cli.command("clear-history")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def clear_history(ctx, yes):
    """Delete all snapshots. The story itself is kept."""
    engine = _get_engine(ctx)
    count = len(engine.snapshots)
    if count == 0:
        console.print("[yellow]![/yellow] History is already empty")
        return
    if not yes and not click.confirm(f"Clear all {count} autosave snapshots?", default=False):
        console.print("[dim]Cancelled.[/dim]")
        return
    engine.clear_history()
    console.print(f"[green]✓[/green] Cleared {count} snapshots")


# --- Exchange commands ---


@cli.command()
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Write to file instead of stdout")
@click.pass_context
def export(ctx, output):
    """Export the story as JSON."""
    engine = _get_engine(ctx)
    text = engine.export_story()
    if output:
        output.write_text(text, encoding="utf-8")
        console.print(f"[green]✓[/green] Exported to {output}")
    else:
        click.echo(text)


@cli.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_(ctx, file):
    """Replace the story with a JSON story file."""
    engine = _get_engine(ctx)
    try:
        data = engine.import_story(file.read_bytes())
    except FormatError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        ctx.exit(1)
    console.print(
        f"[green]✓[/green] Imported \"{escape(data.story_metadata.title)}\" "
        f"({len(data.scenes)} scenes)"
    )
    _commit(engine)


@cli.command()
@click.argument("scene_ref")
@click.option("--base-url", help="Editor URL to build a full link")
@click.pass_context
def share(ctx, scene_ref, base_url):
    """Print a share link (or code) for one scene."""
    engine = _get_engine(ctx)
    target = _require_scene(ctx, engine, scene_ref)
    click.echo(engine.share_scene(target.id, base_url))


@cli.command("open-link")
@click.argument("link")
def open_link(link):
    """Show the scene carried by a share link or code."""
    try:
        shared = decode_shared_scene(link)
    except FormatError:
        console.print("[red]Invalid link[/red] - this shared scene could not be opened")
        raise SystemExit(1)

    s = shared.scene
    console.print(f"[bold]{escape(shared.story_title)}[/bold] [dim]({s.category})[/dim]")
    if s.image and s.image.kind == "emoji":
        console.print(s.image.payload)
    console.print(f"[bold]{escape(s.title)}[/bold]")
    console.print(escape(s.text))
    for h in s.hints:
        console.print(f"  [yellow]hint:[/yellow] {escape(h.text)}")
    for c in s.choices:
        console.print(f"  • {escape(c.text)}")
    console.print(f"[dim]{s.estimated_read_time} min read[/dim]")


@cli.command()
@click.option("--duration", type=float, default=None, help="Stop after this many seconds")
@click.pass_context
def watch(ctx, duration):
    """Autosave edits that other storyforge commands write to the story."""
    engine = _get_engine(ctx)

    async def _run():
        engine.watcher.start()
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            engine.watcher.stop()

    console.print(f"Autosaving every {engine.settings.autosave_interval}s (Ctrl+C to stop)")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass
    console.print(f"[dim]{len(engine.snapshots)} snapshots in history[/dim]")


if __name__ == "__main__":
    cli()
