from __future__ import annotations

import json
from pathlib import Path
from uuid import uuid4

import pytest
from typer.testing import CliRunner

from family_graph.cli import app

runner = CliRunner()


@pytest.fixture
def tree_file(tmp_path: Path) -> Path:
    """George + Helen -> Frank, Alice; Frank + Mary -> Sam; Alice -> Carl; plus an orphan."""
    ids = {name: str(uuid4()) for name in ("George", "Helen", "Frank", "Alice", "Mary", "Sam", "Carl", "Newborn")}
    sexes = {"George": "male", "Helen": "female", "Frank": "male", "Alice": "female", "Mary": "female", "Sam": "male", "Carl": "male"}
    edges = [
        ("George", "Frank"),
        ("Helen", "Frank"),
        ("George", "Alice"),
        ("Helen", "Alice"),
        ("Frank", "Sam"),
        ("Mary", "Sam"),
        ("Alice", "Carl"),
    ]
    data = {
        "tree_id": str(uuid4()),
        "persons": [
            {"person_id": pid, "primary_name": name, "sex": sexes.get(name, "unknown")}
            for name, pid in ids.items()
        ],
        "relationships": [{"parent_id": ids[p], "child_id": ids[c]} for p, c in edges],
        "unions": [
            {"union_type": "marriage", "members": [ids["George"], ids["Helen"]]},
            {"union_type": "marriage", "members": [ids["Frank"], ids["Mary"]]},
        ],
    }
    path = tmp_path / "tree.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_pedigree_prints_ancestors(tree_file: Path) -> None:
    result = runner.invoke(app, ["pedigree", "Sam", "--tree", str(tree_file), "-g", "1"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "Frank" in result.output
    assert "Mary" in result.output
    assert "George" not in result.output
    assert "more ancestors" in result.output


def test_pedigree_json(tree_file: Path) -> None:
    result = runner.invoke(app, ["pedigree", "Sam", "--tree", str(tree_file), "--json"], catch_exceptions=False)

    assert result.exit_code == 0
    assert '"name": "Sam"' in result.output
    assert '"name": "George"' in result.output


def test_descendants_and_hourglass(tree_file: Path) -> None:
    down = runner.invoke(app, ["descendants", "George", "--tree", str(tree_file)], catch_exceptions=False)
    both = runner.invoke(app, ["hourglass", "Frank", "--tree", str(tree_file)], catch_exceptions=False)

    assert down.exit_code == 0
    assert "Carl" in down.output
    assert both.exit_code == 0
    assert "Ancestors" in both.output
    assert "Descendants" in both.output


def test_family_table(tree_file: Path) -> None:
    result = runner.invoke(app, ["family", "Frank", "--tree", str(tree_file)], catch_exceptions=False)

    assert result.exit_code == 0
    assert "Mary" in result.output
    assert "Sam" in result.output


def test_path_between_cousins(tree_file: Path) -> None:
    result = runner.invoke(app, ["path", "Sam", "Carl", "--tree", str(tree_file)], catch_exceptions=False)

    assert result.exit_code == 0
    assert "first cousin" in result.output
    assert "daughter of" in result.output


def test_path_not_found(tree_file: Path) -> None:
    result = runner.invoke(app, ["path", "Sam", "Newborn", "--tree", str(tree_file)], catch_exceptions=False)

    assert result.exit_code == 0
    assert "Not related" in result.output


def test_relationship(tree_file: Path) -> None:
    result = runner.invoke(app, ["relationship", "Sam", "Carl", "--tree", str(tree_file)], catch_exceptions=False)

    assert result.exit_code == 0
    assert "First cousin" in result.output
    assert "Common ancestor: George" in result.output


def test_roots(tree_file: Path) -> None:
    result = runner.invoke(app, ["roots", "--tree", str(tree_file)], catch_exceptions=False)

    assert result.exit_code == 0
    assert "George" in result.output
    assert "Newborn" not in result.output


def test_tree_file_from_environment(tree_file: Path) -> None:
    result = runner.invoke(
        app, ["roots"], env={"FAMILY_GRAPH_TREE_FILE": str(tree_file)}, catch_exceptions=False
    )
    assert result.exit_code == 0
    assert "George" in result.output


def test_unknown_person(tree_file: Path) -> None:
    result = runner.invoke(app, ["pedigree", "Nobody", "--tree", str(tree_file)])

    assert result.exit_code == 1
    assert "No person named 'Nobody'" in result.output


def test_missing_tree_file(tmp_path: Path) -> None:
    result = runner.invoke(app, ["roots", "--tree", str(tmp_path / "absent.json")])

    assert result.exit_code == 1
    assert "File not found" in result.output


def test_import_then_add_parent(tree_file: Path, tmp_path: Path) -> None:
    db = tmp_path / "tree.db"

    imported = runner.invoke(app, ["import", str(tree_file), "--db", str(db)], catch_exceptions=False)
    assert imported.exit_code == 0
    assert "Loaded 8 persons" in imported.output

    added = runner.invoke(app, ["add-parent", "Carl", "Newborn", "--db", str(db)], catch_exceptions=False)
    assert added.exit_code == 0
    assert "Added biological relationship" in added.output

    tree = runner.invoke(app, ["pedigree", "Newborn", "--db", str(db)], catch_exceptions=False)
    assert "Carl" in tree.output


def test_add_parent_rejects_third_parent(tree_file: Path, tmp_path: Path) -> None:
    db = tmp_path / "tree.db"
    runner.invoke(app, ["import", str(tree_file), "--db", str(db)], catch_exceptions=False)

    result = runner.invoke(app, ["add-parent", "Carl", "Sam", "--db", str(db)])

    assert result.exit_code == 1
    assert "at most 2 biological parents" in result.output


def test_tree_file_with_duplicate_edge(tree_file: Path) -> None:
    data = json.loads(tree_file.read_text(encoding="utf-8"))
    data["relationships"].append(dict(data["relationships"][0]))
    tree_file.write_text(json.dumps(data), encoding="utf-8")

    result = runner.invoke(app, ["roots", "--tree", str(tree_file)])

    assert result.exit_code == 1
    assert "already exists" in result.output
