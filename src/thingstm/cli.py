"""
Command Line Interface for Things Task Manager.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TypeVar

import click

from .version import VERSION, APP_SCHEMA_VERSION
from .config import EngineConfig
from .data import DataCore, ThingsContext
from .data.io import DATA_JSON, atomic_write
from .data.validate import validate_backup_file
from .derive import (
    compute_stats, current_time_spent, format_duration, inbox_count, logbook_count,
    project_open_count, subtask_progress, tag_open_count, today_count,
)
from .engine import TaskEngine
from .models import Priority, Scope, Task, ViewContext
from .recovery import ThingsError

T = TypeVar("T")

PRIORITY_MARKS = {Priority.HIGH: "!!", Priority.MEDIUM: "! ", Priority.LOW: "  "}
PRIORITY_CHOICE = click.Choice([p.value for p in Priority])
SCOPE_CHOICE = click.Choice([s.value for s in Scope])


def _run(ctx: click.Context, action: Callable[[ThingsContext], T]) -> T:
    """Open a hydrated context, run ``action`` on it and flush before returning."""
    core: DataCore = ctx.obj

    async def runner():
        async with core.load_context() as things:
            return action(things)

    try:
        return asyncio.run(runner())
    except ThingsError as e:
        raise click.ClickException(str(e)) from e


def _short(entity_id: str) -> str:
    return entity_id[:8]


def _resolve(items: Sequence[T], ref: str, kind: str, by_name: bool = False) -> T:
    """Find one item by exact id, id prefix or (optionally) case-insensitive name."""
    matches = [i for i in items if i.id == ref]
    if not matches:
        matches = [i for i in items if i.id.startswith(ref)]
    if not matches and by_name:
        matches = [i for i in items if i.name.lower() == ref.lower()]
    if not matches:
        raise click.ClickException(f"No {kind} matches '{ref}'")
    if len(matches) > 1:
        raise click.ClickException(f"'{ref}' matches {len(matches)} {kind}s, use a longer id")
    return matches[0]


def _parse_due(value: Optional[str], now: datetime) -> Optional[datetime]:
    if value is None:
        return None
    if value.lower() == "today":
        return now
    try:
        # Local midday keeps the date on the same calendar day in any zone
        return datetime.strptime(value, "%Y-%m-%d").replace(hour=12).astimezone()
    except ValueError as e:
        raise click.BadParameter(f"'{value}' is not 'today' or YYYY-MM-DD", param_hint="'--due'") from e


def _tag_ids(engine: TaskEngine, refs: Sequence[str]) -> List[str]:
    return [_resolve(engine.store.tags, ref, "tag", by_name=True).id for ref in refs]


def _format_task(task: Task, engine: TaskEngine, indent: str = "") -> str:
    check = "[x]" if task.completed else "[ ]"
    line = f"{indent}{check} {PRIORITY_MARKS[task.priority]} {task.title}  ({_short(task.id)})"
    names = {t.id: t.name for t in engine.store.tags}
    tags = [names[t] for t in task.tags if t in names]
    if tags:
        line += "  #" + " #".join(tags)
    if task.due_date:
        line += f"  due {task.due_date.astimezone().date().isoformat()}"
    spent = current_time_spent(task, engine.clock())
    if spent:
        line += f"  {format_duration(spent)}"
    if task.is_running:
        line += "  ⏱️"
    if task.subtask_ids:
        line += f"  {subtask_progress(task, engine.store.tasks):.0f}%"
    return line


@click.group()
@click.version_option(version=VERSION, prog_name="things")
@click.option('--data-dir', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Directory holding the snapshot, its local copy and backups (default: $THINGSTM_DATA_DIR)')
@click.pass_context
def main(ctx, data_dir):
    """
    Things Task Manager - personal tasks with projects, tags, templates and timers.
    """
    ctx.obj = DataCore(EngineConfig.from_env(data_dir))


@main.command()
@click.pass_context
def status(ctx):
    """Show storage locations and task counters."""
    core: DataCore = ctx.obj

    def show(things: ThingsContext):
        engine = things.engine
        tasks = engine.store.tasks
        now = engine.clock()
        click.echo("🔧 Things Task Manager")
        click.echo(f"📦 Version: {VERSION} (schema {APP_SCHEMA_VERSION})")
        click.echo(f"📁 Data: {core.config.data_dir} ({core.config.storage_format})")
        click.echo(f"💾 Local copy: {core.config.local_dir}")
        click.echo(f"🗂️  Backups: {core.config.backup_dir}")
        if not things.persistence.primary_available:
            click.echo("⚠️  Data directory unavailable, using local copy only")
        click.echo("")
        click.echo(f"📥 Inbox: {inbox_count(tasks)}")
        click.echo(f"📅 Today: {today_count(tasks, now)}")
        click.echo(f"📚 Logbook: {logbook_count(tasks)}")
        click.echo(f"📂 Projects: {len(engine.store.projects)}")
        click.echo(f"🏷️  Tags: {len(engine.store.tags)}")
        click.echo(f"📋 Templates: {len(engine.store.templates)}")
        for task in tasks:
            if task.is_running:
                click.echo(f"⏱️  Running: {task.title} ({format_duration(current_time_spent(task, now))})")

    _run(ctx, show)


@main.command()
@click.argument('title')
@click.option('-p', '--parent', help='Id of the parent task')
@click.option('-d', '--description', help='Task notes')
@click.option('--due', help="Due date: 'today' or YYYY-MM-DD")
@click.option('--priority', type=PRIORITY_CHOICE, help='Task priority')
@click.option('-t', '--tag', 'tags', multiple=True, help='Tag id or name (repeatable)')
@click.option('--project', help='Project id or name')
@click.pass_context
def add(ctx, title, parent, description, due, priority, tags, project):
    """Add a new task."""
    def create(things: ThingsContext) -> str:
        engine = things.engine
        parent_id = _resolve(engine.store.tasks, parent, "task").id if parent else None
        if project:
            engine.select_project(_resolve(engine.store.projects, project, "project", by_name=True).id)
        extra = {}
        if description is not None:
            extra['description'] = description
        if priority:
            extra['priority'] = Priority(priority)
        if tags:
            extra['tags'] = _tag_ids(engine, tags)
        return engine.add_task(title, parent_id=parent_id, due_date=_parse_due(due, engine.clock()), extra=extra)

    task_id = _run(ctx, create)
    click.echo(f"✅ Added task {_short(task_id)}: {title}")


@main.command(name='list')
@click.option('-s', '--scope', type=SCOPE_CHOICE, default=Scope.INBOX.value, help='Inbox, today or logbook')
@click.option('-t', '--tag', help='Only tasks with this tag (id or name)')
@click.option('--project', help='Only tasks of this project (id or name)')
@click.option('-q', '--search', help='Case-insensitive text search')
@click.option('--subtasks/--no-subtasks', default=True, help='Show subtasks under their parent')
@click.pass_context
def list_tasks(ctx, scope, tag, project, search, subtasks):
    """List the tasks of a view."""
    def render(things: ThingsContext) -> List[str]:
        engine = things.engine
        engine.store.set_view(ViewContext(
            scope=Scope(scope),
            search_query=search or "",
            selected_tag=_resolve(engine.store.tags, tag, "tag", by_name=True).id if tag else None,
            selected_project_id=(
                _resolve(engine.store.projects, project, "project", by_name=True).id if project else None
            ),
        ))
        index = engine.store.task_index()
        lines = []
        for task in engine.filtered_tasks():
            lines.append(_format_task(task, engine))
            if subtasks:
                lines.extend(_format_task(index[s], engine, "    ") for s in task.subtask_ids if s in index)
        return lines

    lines = _run(ctx, render)
    if not lines:
        click.echo("📭 No tasks")
        return
    for line in lines:
        click.echo(line)


@main.command()
@click.argument('task_ref')
@click.pass_context
def done(ctx, task_ref):
    """Toggle completion of a task and its subtasks."""
    def toggle(things: ThingsContext):
        task = _resolve(things.store.tasks, task_ref, "task")
        return task.title, things.engine.toggle_task(task.id)

    title, completed = _run(ctx, toggle)
    click.echo(f"✅ Completed: {title}" if completed else f"↩️  Reopened: {title}")


@main.command()
@click.argument('task_ref')
@click.pass_context
def timer(ctx, task_ref):
    """Start or stop the timer of a task."""
    def toggle(things: ThingsContext):
        task = _resolve(things.store.tasks, task_ref, "task")
        running = things.engine.toggle_timer(task.id)
        spent = current_time_spent(things.store.get_task(task.id), things.engine.clock())
        return task.title, running, spent

    title, running, spent = _run(ctx, toggle)
    if running:
        click.echo(f"⏱️  Timer started: {title}")
    else:
        click.echo(f"⏹️  Timer stopped: {title} ({format_duration(spent)})")


@main.command()
@click.argument('task_ref')
@click.option('--title', help='New title')
@click.option('-d', '--description', help='New notes')
@click.option('--priority', type=PRIORITY_CHOICE, help='New priority')
@click.option('--due', help="New due date: 'today' or YYYY-MM-DD")
@click.option('--clear-due', is_flag=True, help='Remove the due date')
@click.option('-t', '--tag', 'tags', multiple=True, help='Replace tags (repeatable)')
@click.pass_context
def edit(ctx, task_ref, title, description, priority, due, clear_due, tags):
    """Edit fields of a task."""
    def apply(things: ThingsContext) -> Task:
        engine = things.engine
        task = _resolve(engine.store.tasks, task_ref, "task")
        changes = {}
        if title:
            changes['title'] = title
        if description is not None:
            changes['description'] = description
        if priority:
            changes['priority'] = Priority(priority)
        if clear_due:
            changes['due_date'] = None
        elif due:
            changes['due_date'] = _parse_due(due, engine.clock())
        if tags:
            changes['tags'] = _tag_ids(engine, tags)
        if changes:
            task = task.model_copy(update=changes)
            engine.update_task(task)
        return task

    task = _run(ctx, apply)
    click.echo(f"✏️  Updated {_short(task.id)}: {task.title}")


@main.command()
@click.argument('task_ref')
@click.pass_context
def delete(ctx, task_ref):
    """Delete a task and its subtasks."""
    def remove(things: ThingsContext) -> List[str]:
        task = _resolve(things.store.tasks, task_ref, "task")
        return things.engine.delete_task(task.id)

    removed = _run(ctx, remove)
    click.echo(f"🗑️  Deleted {len(removed)} task(s)")


@main.command()
@click.argument('task_ref')
@click.argument('project_ref', required=False)
@click.pass_context
def move(ctx, task_ref, project_ref):
    """Move a task into a project, or out of any project when none is given."""
    def apply(things: ThingsContext):
        engine = things.engine
        task = _resolve(engine.store.tasks, task_ref, "task")
        project = _resolve(engine.store.projects, project_ref, "project", by_name=True) if project_ref else None
        if not engine.move_task_to_project(task.id, project.id if project else None):
            raise click.ClickException("Only top-level tasks can be moved between projects")
        return task, project

    task, project = _run(ctx, apply)
    if project:
        click.echo(f"📂 Moved '{task.title}' to {project.name}")
    else:
        click.echo(f"📥 Removed '{task.title}' from its project")


# ---- projects ----

@main.group()
def project():
    """Manage projects."""
    pass


@project.command(name='add')
@click.argument('name')
@click.pass_context
def project_add(ctx, name):
    """Create a project."""
    project_id = _run(ctx, lambda things: things.engine.add_project(name))
    click.echo(f"✅ Added project {_short(project_id)}: {name}")


@project.command(name='delete')
@click.argument('project_ref')
@click.pass_context
def project_delete(ctx, project_ref):
    """Delete a project. Its tasks are kept."""
    def remove(things: ThingsContext):
        target = _resolve(things.store.projects, project_ref, "project", by_name=True)
        things.engine.delete_project(target.id)
        return target

    target = _run(ctx, remove)
    click.echo(f"🗑️  Deleted project {target.name}")


@project.command(name='list')
@click.pass_context
def project_list(ctx):
    """List projects with their open task counts."""
    def render(things: ThingsContext):
        tasks = things.store.tasks
        return [(p, project_open_count(p, tasks)) for p in things.store.projects]

    rows = _run(ctx, render)
    if not rows:
        click.echo("📭 No projects")
        return
    for item, open_count in rows:
        click.echo(f"📂 {item.name}  ({_short(item.id)})  {open_count} open")


# ---- tags ----

@main.group()
def tag():
    """Manage tags."""
    pass


@tag.command(name='add')
@click.argument('name')
@click.pass_context
def tag_add(ctx, name):
    """Create a tag."""
    tag_id = _run(ctx, lambda things: things.engine.add_tag(name))
    click.echo(f"✅ Added tag {_short(tag_id)}: {name}")


@tag.command(name='rename')
@click.argument('tag_ref')
@click.argument('name')
@click.pass_context
def tag_rename(ctx, tag_ref, name):
    """Rename a tag."""
    def apply(things: ThingsContext):
        target = _resolve(things.store.tags, tag_ref, "tag", by_name=True)
        things.engine.rename_tag(target.id, name)
        return target

    target = _run(ctx, apply)
    click.echo(f"✏️  Renamed tag {target.name} to {name}")


@tag.command(name='delete')
@click.argument('tag_ref')
@click.pass_context
def tag_delete(ctx, tag_ref):
    """Delete a tag. Tasks keep the id and simply stop showing it."""
    def remove(things: ThingsContext):
        target = _resolve(things.store.tags, tag_ref, "tag", by_name=True)
        things.engine.delete_tag(target.id)
        return target

    target = _run(ctx, remove)
    click.echo(f"🗑️  Deleted tag {target.name}")


@tag.command(name='list')
@click.pass_context
def tag_list(ctx):
    """List tags with their open task counts."""
    def render(things: ThingsContext):
        tasks = things.store.tasks
        return [(t, tag_open_count(t.id, tasks)) for t in things.store.tags]

    for item, open_count in _run(ctx, render):
        click.echo(f"🏷️  {item.name}  ({item.id})  {open_count} open")


# ---- templates ----

@main.group()
def template():
    """Manage task templates."""
    pass


@template.command(name='add')
@click.argument('name')
@click.option('--title', help='Title of the generated task')
@click.option('-d', '--description', help='Notes of the generated task')
@click.option('--priority', type=PRIORITY_CHOICE, help='Priority of the generated task')
@click.option('-t', '--tag', 'tags', multiple=True, help='Tag id or name (repeatable)')
@click.option('-s', '--subtask', 'subtasks', multiple=True, help='Subtask title (repeatable)')
@click.pass_context
def template_add(ctx, name, title, description, priority, tags, subtasks):
    """Create a template."""
    def create(things: ThingsContext) -> str:
        engine = things.engine
        return engine.add_template(
            name=name,
            title=title or name,
            description=description,
            priority=Priority(priority) if priority else None,
            tags=_tag_ids(engine, tags),
            subtasks=list(subtasks),
        )

    template_id = _run(ctx, create)
    click.echo(f"✅ Added template {_short(template_id)}: {name}")


@template.command(name='use')
@click.argument('template_ref')
@click.pass_context
def template_use(ctx, template_ref):
    """Create a task (with subtasks) from a template."""
    def apply(things: ThingsContext):
        target = _resolve(things.store.templates, template_ref, "template", by_name=True)
        return target, things.engine.use_template(target.id)

    target, task_id = _run(ctx, apply)
    click.echo(f"✅ Created task {_short(task_id)} from template {target.name}")


@template.command(name='delete')
@click.argument('template_ref')
@click.pass_context
def template_delete(ctx, template_ref):
    """Delete a template."""
    def remove(things: ThingsContext):
        target = _resolve(things.store.templates, template_ref, "template", by_name=True)
        things.engine.delete_template(target.id)
        return target

    target = _run(ctx, remove)
    click.echo(f"🗑️  Deleted template {target.name}")


@template.command(name='list')
@click.pass_context
def template_list(ctx):
    """List templates."""
    templates = _run(ctx, lambda things: things.store.templates)
    if not templates:
        click.echo("📭 No templates")
        return
    for item in templates:
        click.echo(f"📋 {item.name}  ({_short(item.id)})  '{item.title}', {len(item.subtasks)} subtasks")


# ---- statistics ----

@main.command()
@click.option('--days', default=7, show_default=True, help='Length of the trend')
@click.pass_context
def stats(ctx, days):
    """Show completion and time tracking statistics."""
    summary = _run(ctx, lambda things: compute_stats(things.store.tasks, things.engine.clock(), days))
    click.echo(f"📊 Tasks: {summary.done}/{summary.total} done ({summary.progress:.0f}%)")
    click.echo(f"⏱️  Tracked: {format_duration(summary.total_seconds)}")
    for priority, seconds in summary.time_by_priority.items():
        click.echo(f"   {priority.value}: {format_duration(seconds)}")
    click.echo("📈 Trend (created / completed):")
    for point in summary.trend:
        click.echo(f"   {point.day.isoformat()}  {point.created:>3} / {point.completed:<3}")


# ---- snapshot exchange ----

@main.command(name='export')
@click.option('-o', '--output', type=click.Path(dir_okay=False, path_type=Path),
              help='Write to this file instead of the backup directory')
@click.option('--stdout', 'to_stdout', is_flag=True, help='Print the snapshot instead of writing a file')
@click.pass_context
def export_data(ctx, output, to_stdout):
    """Export all data as a JSON snapshot."""
    core: DataCore = ctx.obj
    blob = _run(ctx, lambda things: things.engine.export_json())
    if to_stdout:
        click.echo(blob)
        return
    try:
        if output:
            atomic_write(DATA_JSON, output, blob, create_dirs=True)
            path = output
        else:
            path = core.get_backup_manager().create_backup(blob)
    except ThingsError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"✅ Exported to {path}")


@main.command(name='import')
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_data(ctx, file):
    """Import a JSON snapshot, replacing the collections it contains."""
    text = file.read_text(encoding='utf-8')
    if not _run(ctx, lambda things: things.engine.import_data(text)):
        raise click.ClickException(f"{file} is not a valid snapshot; nothing was changed")
    click.echo(f"✅ Imported {file}")


# ---- backups ----

@main.group()
def backup():
    """Backup and recovery commands."""
    pass


@backup.command(name='create')
@click.pass_context
def backup_create(ctx):
    """Write a dated backup of all data."""
    core: DataCore = ctx.obj
    blob = _run(ctx, lambda things: things.engine.export_json())
    try:
        path = core.get_backup_manager().create_backup(blob)
    except ThingsError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"✅ Backup created: {path}")


@backup.command(name='list')
@click.pass_context
def backup_list(ctx):
    """List all available backups."""
    core: DataCore = ctx.obj
    backups = core.get_backup_manager().list_backups()

    if not backups:
        click.echo("📭 No backups found")
        return

    click.echo("📦 Available backups:")
    click.echo("")
    for info in backups:
        click.echo(f"🗂️  {info['backup_id']}")
        click.echo(f"   📅 Created: {info['created_at']}")
        if info['status'] == 'corrupted':
            click.echo("   ❌ Unreadable")
        else:
            click.echo(f"   📋 Tasks: {info['tasks_count']}, projects: {info['projects_count']}, "
                       f"templates: {info['templates_count']}")
        click.echo("")


@backup.command(name='restore')
@click.argument('backup_id')
@click.confirmation_option(prompt='Are you sure you want to restore from backup?')
@click.pass_context
def backup_restore(ctx, backup_id):
    """Restore data from a backup file."""
    core: DataCore = ctx.obj
    manager = core.get_backup_manager()

    def restore(things: ThingsContext) -> bool:
        try:
            return manager.restore_backup(backup_id, things.engine)
        except FileNotFoundError as e:
            raise click.ClickException(str(e)) from e

    if not _run(ctx, restore):
        raise click.ClickException(f"Backup {backup_id} could not be applied; nothing was changed")
    click.echo("✅ Backup restored successfully")


@backup.command(name='cleanup')
@click.option('--keep', type=int, default=None, help='Number of backups to keep (default: $THINGSTM_BACKUP_KEEP or 10)')
@click.confirmation_option(prompt='Are you sure you want to cleanup old backups?')
@click.pass_context
def backup_cleanup(ctx, keep):
    """Remove old backups, keeping only the most recent ones."""
    core: DataCore = ctx.obj
    removed_count = core.get_backup_manager().cleanup_old_backups(keep if keep is not None else core.config.backup_keep)

    if removed_count > 0:
        click.echo(f"✅ Removed {removed_count} old backup(s)")
    else:
        click.echo("📦 No backups needed to be removed")


@main.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def validate(ctx, file):
    """Check a snapshot file against the snapshot schema."""
    valid, errors = validate_backup_file(file)
    if valid:
        click.echo(f"✅ {file} is valid (schema {APP_SCHEMA_VERSION})")
        return
    click.echo(f"❌ {file} failed validation:")
    for error in errors:
        click.echo(f"   - {error}")
    ctx.exit(1)


@main.command()
@click.option('-y', '--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def reset(ctx, yes):
    """Delete all tasks, projects and templates and restore default settings."""
    core: DataCore = ctx.obj

    def confirm() -> bool:
        return yes or click.confirm('This deletes all tasks, projects and templates. Continue?', default=False)

    async def runner() -> bool:
        async with core.load_context() as things:
            return await things.reset_all_data(confirm)

    if asyncio.run(runner()):
        click.echo("✅ All data reset")
    else:
        click.echo("Reset cancelled")


if __name__ == "__main__":
    main()
