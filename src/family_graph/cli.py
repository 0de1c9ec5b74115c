"""CLI interface for the family graph engine."""

import asyncio
import json
import os
from pathlib import Path
from typing import Any
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree
from structlog.contextvars import bind_contextvars, clear_contextvars

from .exceptions import FamilyGraphError
from .models import PersonSummary, TreeNode
from .service import FamilyTreeService, TreeScope
from .sqlite_store import SQLiteEdgeStore
from .store import (
    EdgeStore,
    InMemoryEdgeStore,
    ParentChildEdge,
    ParentChildKind,
    Person,
    Union,
    UnionMember,
)

app = typer.Typer(
    name="family-graph",
    help="Explore pedigrees, descendants and relationships in a family tree",
    add_completion=False,
)
console = Console()


@app.callback()
def main(ctx: typer.Context):
    """Explore pedigrees, descendants and relationships in a family tree."""
    clear_contextvars()
    bind_contextvars(command=ctx.invoked_subcommand)


def get_config() -> dict[str, str | None]:
    """Load configuration from environment."""
    from dotenv import load_dotenv

    load_dotenv()

    return {
        "tree_file": os.getenv("FAMILY_GRAPH_TREE_FILE"),
        "db_path": os.getenv("FAMILY_GRAPH_DB_PATH"),
    }


def populate_store(store: EdgeStore, data: dict[str, Any]) -> int:
    """Load a JSON tree document into a store. Returns the person count.

    Relationships go through ``insert_edge`` so a malformed file cannot
    introduce a cycle or a third biological parent.
    """
    tree_id = UUID(data["tree_id"]) if data.get("tree_id") else None

    persons = data.get("persons", [])
    for record in persons:
        person = Person.from_dict(record)
        person.tree_id = person.tree_id or tree_id
        store.add_person(person)

    for record in data.get("relationships", []):
        store.insert_edge(ParentChildEdge.from_dict(record))

    for record in data.get("unions", []):
        union = Union.from_dict(record)
        union.tree_id = union.tree_id or tree_id
        store.add_union(union)
        for member_id in record.get("members", []):
            store.add_union_member(UnionMember(union_id=union.union_id, person_id=UUID(member_id)))

    return len(persons)


def _open_store(tree: Path | None, db: Path | None) -> EdgeStore:
    config = get_config()
    db = db or (Path(config["db_path"]) if config["db_path"] else None)
    tree = tree or (Path(config["tree_file"]) if config["tree_file"] else None)

    if db is not None:
        return SQLiteEdgeStore(db)
    if tree is None:
        console.print("[red]Error: No tree given. Use --tree FILE or --db PATH.[/red]")
        raise typer.Exit(1)
    if not tree.exists():
        console.print(f"[red]Error: File not found: {tree}[/red]")
        raise typer.Exit(1)

    store = InMemoryEdgeStore()
    try:
        populate_store(store, json.loads(tree.read_text(encoding="utf-8")))
    except FamilyGraphError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)
    return store


def _resolve(store: EdgeStore, ref: str) -> UUID:
    """Accept a person UUID or an exact primary name."""
    try:
        return UUID(ref)
    except ValueError:
        pass
    matches = [p for p in store.list_persons() if p.primary_name == ref]
    if len(matches) != 1:
        problem = "No person" if not matches else f"{len(matches)} persons"
        console.print(f"[red]Error: {problem} named '{ref}'[/red]")
        raise typer.Exit(1)
    return matches[0].person_id


def _run(coro):
    try:
        return asyncio.run(coro)
    except FamilyGraphError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)


def _label(person: PersonSummary) -> str:
    born = person.birth_date.year if person.birth_date else "?"
    died = person.death_date.year if person.death_date else ""
    return f"[bold]{person.name}[/bold] [dim]({born}–{died})[/dim]"


def _add_branch(branch: Tree, node: TreeNode, direction: str) -> None:
    for relative in node.parents if direction == "parents" else node.children:
        sub = branch.add(_label(relative))
        _add_branch(sub, relative, direction)
    if node.has_more_ancestors and direction == "parents":
        branch.add("[dim]… more ancestors[/dim]")
    if node.has_more_descendants and direction == "children":
        branch.add("[dim]… more descendants[/dim]")


def _print_tree(node: TreeNode, directions: list[str], as_json: bool) -> None:
    if as_json:
        console.print_json(node.model_dump_json())
        return
    root = Tree(_label(node))
    for direction in directions:
        branch = root.add("Ancestors" if direction == "parents" else "Descendants") if len(directions) > 1 else root
        _add_branch(branch, node, direction)
    console.print(root)


@app.command()
def pedigree(
    person: str = typer.Argument(..., help="Person UUID or exact name"),
    generations: int = typer.Option(None, "--generations", "-g", help="Generations to show"),
    tree: Path = typer.Option(None, "--tree", "-t", help="JSON tree file"),
    db: Path = typer.Option(None, "--db", help="SQLite database"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a tree"),
):
    """Show a person's ancestors."""
    store = _open_store(tree, db)
    service = FamilyTreeService(store)
    node = _run(service.get_pedigree(_resolve(store, person), TreeScope(), generations))
    _print_tree(node, ["parents"], as_json)


@app.command()
def descendants(
    person: str = typer.Argument(..., help="Person UUID or exact name"),
    generations: int = typer.Option(None, "--generations", "-g", help="Generations to show"),
    tree: Path = typer.Option(None, "--tree", "-t", help="JSON tree file"),
    db: Path = typer.Option(None, "--db", help="SQLite database"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a tree"),
):
    """Show a person's descendants."""
    store = _open_store(tree, db)
    service = FamilyTreeService(store)
    node = _run(service.get_descendants(_resolve(store, person), TreeScope(), generations))
    _print_tree(node, ["children"], as_json)


@app.command()
def hourglass(
    person: str = typer.Argument(..., help="Person UUID or exact name"),
    generations: int = typer.Option(None, "--generations", "-g", help="Generations each way"),
    tree: Path = typer.Option(None, "--tree", "-t", help="JSON tree file"),
    db: Path = typer.Option(None, "--db", help="SQLite database"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a tree"),
):
    """Show ancestors and descendants around one person."""
    store = _open_store(tree, db)
    service = FamilyTreeService(store)
    node = _run(service.get_hourglass(_resolve(store, person), TreeScope(), generations))
    _print_tree(node, ["parents", "children"], as_json)


@app.command()
def family(
    person: str = typer.Argument(..., help="Person UUID or exact name"),
    tree: Path = typer.Option(None, "--tree", "-t", help="JSON tree file"),
    db: Path = typer.Option(None, "--db", help="SQLite database"),
):
    """Show a person's parents, spouses and children."""
    store = _open_store(tree, db)
    service = FamilyTreeService(store)
    group = _run(service.get_family_group(_resolve(store, person), TreeScope()))

    table = Table(title=f"Family of {group.person.name}")
    table.add_column("Role", style="cyan")
    table.add_column("Name")
    for parent in group.parents:
        table.add_row("Parent", parent.name)
    for spouse in group.spouses:
        table.add_row(f"Spouse ({spouse.union_type.value})", spouse.person.name)
    for child in group.children:
        table.add_row("Child", child.name)
    console.print(table)


@app.command()
def path(
    person1: str = typer.Argument(..., help="From person (UUID or exact name)"),
    person2: str = typer.Argument(..., help="To person (UUID or exact name)"),
    max_depth: int = typer.Option(None, "--max-depth", "-d", help="Maximum path length"),
    tree: Path = typer.Option(None, "--tree", "-t", help="JSON tree file"),
    db: Path = typer.Option(None, "--db", help="SQLite database"),
):
    """Find the shortest relationship path between two people."""
    store = _open_store(tree, db)
    service = FamilyTreeService(store)
    result = _run(
        service.find_relationship_path(_resolve(store, person1), _resolve(store, person2), TreeScope(), max_depth)
    )

    if not result.path_found:
        console.print(f"[yellow]{result.relationship_label}[/yellow]: {result.message}")
        return

    table = Table(title="Relationship Path")
    table.add_column("#", style="dim")
    table.add_column("Name")
    table.add_column("Next step", style="cyan")
    for i, node in enumerate(result.path):
        table.add_row(str(i), node.name, node.relationship_to_next or "")
    console.print(table)
    console.print(Panel(result.description or result.relationship_label, title=result.relationship_label))


@app.command()
def relationship(
    person1: str = typer.Argument(..., help="First person (UUID or exact name)"),
    person2: str = typer.Argument(..., help="Second person (UUID or exact name)"),
    tree: Path = typer.Option(None, "--tree", "-t", help="JSON tree file"),
    db: Path = typer.Option(None, "--db", help="SQLite database"),
):
    """Classify the blood relationship between two people."""
    store = _open_store(tree, db)
    service = FamilyTreeService(store)
    result = _run(service.get_relationship(_resolve(store, person1), _resolve(store, person2), TreeScope()))

    lines = [result.description]
    for ancestor in result.common_ancestors:
        lines.append(
            f"Common ancestor: {ancestor.person.name} "
            f"({ancestor.generations_from_person1}/{ancestor.generations_from_person2} generations)"
        )
    console.print(Panel("\n".join(lines), title=result.relationship_type))


@app.command()
def roots(
    tree: Path = typer.Option(None, "--tree", "-t", help="JSON tree file"),
    db: Path = typer.Option(None, "--db", help="SQLite database"),
):
    """List founding ancestors, largest lineage first."""
    store = _open_store(tree, db)
    service = FamilyTreeService(store)
    result = _run(service.get_root_persons(TreeScope()))

    table = Table(title=f"Root Persons ({result.total_roots})")
    table.add_column("Name")
    table.add_column("Children", justify="right")
    table.add_column("Descendants", justify="right")
    table.add_column("Generations", justify="right")
    for root in result.roots:
        table.add_row(root.person.name, str(root.child_count), str(root.descendant_count), str(root.generation_depth))
    console.print(table)


@app.command("import")
def import_tree(
    file_path: Path = typer.Argument(..., help="JSON tree file"),
    db: Path = typer.Option(..., "--db", help="SQLite database to load into"),
):
    """Load a JSON tree file into a SQLite database."""
    if not file_path.exists():
        console.print(f"[red]Error: File not found: {file_path}[/red]")
        raise typer.Exit(1)

    store = SQLiteEdgeStore(db)
    try:
        count = populate_store(store, json.loads(file_path.read_text(encoding="utf-8")))
    except FamilyGraphError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Loaded {count} persons from {file_path.name}[/green]")


@app.command("add-parent")
def add_parent(
    parent: str = typer.Argument(..., help="Parent (UUID or exact name)"),
    child: str = typer.Argument(..., help="Child (UUID or exact name)"),
    kind: ParentChildKind = typer.Option(ParentChildKind.BIOLOGICAL, "--kind", "-k", help="Relationship kind"),
    db: Path = typer.Option(..., "--db", help="SQLite database"),
):
    """Record a parent-child relationship."""
    store = SQLiteEdgeStore(db)
    service = FamilyTreeService(store)
    edge = _run(service.add_parent_child_edge(_resolve(store, parent), _resolve(store, child), TreeScope(), kind))
    console.print(f"[green]Added {edge.kind.value} relationship {edge.edge_id}[/green]")


if __name__ == "__main__":
    app()
