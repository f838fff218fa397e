from __future__ import annotations

import json
from pathlib import Path

import pytest

from hands.catalog import build_catalog, scan_catalog
from hands.errors import TrackerLocationError, UnsafeTargetError
from hands.merge import OWNERSHIP_MARKER
from hands.models import Descriptor, DescriptorId, FilePayload
from hands.status import Status, classify
from hands.sync import checked_target, plan_selection, select_targets, sync
from hands.tracker import Tracker


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _catalog(tmp_path: Path) -> Path:
    cat = tmp_path / "catalog"
    _write(
        cat / "skills" / "pr-review" / "SKILL.md",
        "---\nname: pr-review\ndependencies:\n  agents: [reviewer]\n  mcpServers: [github]\n---\nReview.\n",
    )
    _write(cat / "skills" / "pr-review" / "checklist.md", "- tests\n")
    _write(cat / "commands" / "ship.md", "ship it")
    _write(cat / "agents" / "reviewer.md", "you review")
    _write(cat / "mcp-servers" / "github.json", json.dumps({"command": "gh-mcp"}))
    _write(cat / "hooks" / "notify.json", json.dumps({"stop": [{"command": "notify-send done"}]}))
    return cat


def _tracker(proj: Path) -> Tracker:
    return Tracker(proj / ".hands" / "state" / "installed.json")


def test_sync_installs_in_category_order(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    proj.mkdir()
    catalog = scan_catalog(cat)
    lines: list[str] = []

    report = sync(
        catalog=catalog,
        project_root=proj,
        selection=[d.id for d in catalog.descriptors],
        tracker=_tracker(proj),
        echo=lines.append,
    )

    assert report.ok
    assert report.installed == [
        "skill:pr-review",
        "command:ship",
        "agent:reviewer",
        "mcpServer:github",
        "hook:notify",
    ]
    assert [line for line in lines if line.startswith("  Installed:")] == [
        f"  Installed: {a}" for a in report.installed
    ]
    assert (proj / ".claude" / "skills" / "pr-review" / "checklist.md").read_text(encoding="utf-8") == "- tests\n"
    assert (proj / ".claude" / "commands" / "ship.md").exists()
    assert (proj / ".claude" / "agents" / "reviewer.md").exists()
    assert json.loads((proj / ".mcp.json").read_text(encoding="utf-8")) == {
        "mcpServers": {"github": {"command": "gh-mcp", OWNERSHIP_MARKER: "github"}}
    }
    assert _tracker(proj).tracked_ids() == frozenset(d.id for d in catalog.descriptors)

    # Nothing left to do.
    again = sync(
        catalog=catalog,
        project_root=proj,
        selection=[d.id for d in catalog.descriptors],
        tracker=_tracker(proj),
        echo=lines.append,
    )
    assert not again.changed


def test_hooks_and_servers_go_to_every_detected_target(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    (proj / ".claude").mkdir(parents=True)
    (proj / ".cursor").mkdir()
    _write(proj / ".claude" / "settings.json", json.dumps({"model": "opus"}))
    catalog = scan_catalog(cat)

    assert select_targets(proj) == ("claude", "cursor")
    sync(
        catalog=catalog,
        project_root=proj,
        selection=[DescriptorId("hook", "notify"), DescriptorId("mcpServer", "github")],
        tracker=_tracker(proj),
        echo=lambda _: None,
    )

    settings = json.loads((proj / ".claude" / "settings.json").read_text(encoding="utf-8"))
    assert settings["model"] == "opus"
    assert settings["hooks"] == {
        "Stop": [
            {
                "matcher": "*",
                "hooks": [{"type": "command", "command": "notify-send done"}],
                OWNERSHIP_MARKER: "notify",
            }
        ]
    }
    cursor_hooks = json.loads((proj / ".cursor" / "hooks.json").read_text(encoding="utf-8"))
    assert cursor_hooks == {"version": 1, "hooks": {"stop": [{"command": "notify-send done", OWNERSHIP_MARKER: "notify"}]}}
    assert "github" in json.loads((proj / ".cursor" / "mcp.json").read_text(encoding="utf-8"))["mcpServers"]
    assert "github" in json.loads((proj / ".mcp.json").read_text(encoding="utf-8"))["mcpServers"]


def test_configured_targets_override_detection(tmp_path: Path) -> None:
    (tmp_path / ".cursor").mkdir()
    assert select_targets(tmp_path, ("claude",)) == ("claude",)
    assert select_targets(tmp_path / "empty") == ("claude",)


def test_existing_different_file_is_backed_up(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    _write(proj / ".claude" / "commands" / "ship.md", "my own version")
    lines: list[str] = []

    report = sync(
        catalog=scan_catalog(cat),
        project_root=proj,
        selection=[DescriptorId("command", "ship")],
        tracker=_tracker(proj),
        backup_suffix=".bak",
        echo=lines.append,
    )

    assert report.updated == ["command:ship"]
    assert (proj / ".claude" / "commands" / "ship.md").read_text(encoding="utf-8") == "ship it"
    assert (proj / ".claude" / "commands" / "ship.md.bak").read_text(encoding="utf-8") == "my own version"
    assert "  Backed up existing file to: ship.md.bak" in lines


def test_untracked_local_file_is_never_deleted(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    _write(proj / ".claude" / "commands" / "ship.md", "my own version")

    report = sync(
        catalog=scan_catalog(cat), project_root=proj, selection=[], tracker=_tracker(proj), echo=lambda _: None
    )
    assert report.removed == []
    assert (proj / ".claude" / "commands" / "ship.md").read_text(encoding="utf-8") == "my own version"


def test_failure_is_reported_and_the_run_continues(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    _write(proj / ".mcp.json", json.dumps({"mcpServers": {"github": {"command": "someone-elses"}}}))
    lines: list[str] = []
    tracker = _tracker(proj)

    report = sync(
        catalog=scan_catalog(cat),
        project_root=proj,
        selection=[DescriptorId("mcpServer", "github"), DescriptorId("hook", "notify")],
        tracker=tracker,
        targets=("claude",),
        echo=lines.append,
    )

    assert [i for i, _ in report.failed] == ["mcpServer:github"]
    assert any(line.startswith("error: mcpServer:github:") for line in lines)
    assert report.installed == ["hook:notify"]
    assert tracker.lookup(DescriptorId("mcpServer", "github")) is None
    assert json.loads((proj / ".mcp.json").read_text(encoding="utf-8")) == {
        "mcpServers": {"github": {"command": "someone-elses"}}
    }


def test_missing_source_fails_only_that_descriptor(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    proj.mkdir()
    catalog = scan_catalog(cat)
    (cat / "commands" / "ship.md").unlink()

    report = sync(
        catalog=catalog,
        project_root=proj,
        selection=[DescriptorId("command", "ship"), DescriptorId("agent", "reviewer")],
        tracker=_tracker(proj),
        echo=lambda _: None,
    )
    assert [i for i, _ in report.failed] == ["command:ship"]
    assert report.installed == ["agent:reviewer"]


def test_missing_environment_is_skipped_unless_confirmed(tmp_path: Path) -> None:
    cat = tmp_path / "catalog"
    _write(cat / "mcp-servers" / "github.json", json.dumps({"command": "gh-mcp", "env": {"T": "${GITHUB_TOKEN}"}}))
    proj = tmp_path / "proj"
    proj.mkdir()
    catalog = scan_catalog(cat)
    ident = DescriptorId("mcpServer", "github")
    lines: list[str] = []

    report = sync(
        catalog=catalog, project_root=proj, selection=[ident], tracker=_tracker(proj), environ={}, echo=lines.append
    )
    assert report.skipped == ["mcpServer:github"]
    assert not (proj / ".mcp.json").exists()
    assert any("GITHUB_TOKEN" in line for line in lines)

    asked: list[tuple[str, ...]] = []
    warned_first: list[bool] = []
    start = len(lines)

    def confirm(descriptor, missing):
        asked.append(missing)
        warned_first.append(any("GITHUB_TOKEN" in line for line in lines[start:]))
        return True

    report = sync(
        catalog=catalog,
        project_root=proj,
        selection=[ident],
        tracker=_tracker(proj),
        environ={},
        confirm_missing_env=confirm,
        echo=lines.append,
    )
    assert asked == [("GITHUB_TOKEN",)]
    assert warned_first == [True]
    assert report.installed == ["mcpServer:github"]
    assert (proj / ".mcp.json").exists()


def test_deselected_entries_are_removed_by_owner(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    proj.mkdir()
    catalog = scan_catalog(cat)
    tracker = _tracker(proj)
    ident = DescriptorId("hook", "notify")

    sync(catalog=catalog, project_root=proj, selection=[ident], tracker=tracker, echo=lambda _: None)
    settings_path = proj / ".claude" / "settings.json"
    settings = json.loads(settings_path.read_text(encoding="utf-8"))
    settings["hooks"]["Stop"].append({"matcher": "*", "hooks": [{"type": "command", "command": "mine"}]})
    settings_path.write_text(json.dumps(settings), encoding="utf-8")

    report = sync(catalog=catalog, project_root=proj, selection=[], tracker=tracker, echo=lambda _: None)
    assert report.removed == ["hook:notify"]
    assert json.loads(settings_path.read_text(encoding="utf-8"))["hooks"] == {
        "Stop": [{"matcher": "*", "hooks": [{"type": "command", "command": "mine"}]}]
    }
    assert tracker.lookup(ident) is None


def test_records_for_vanished_descriptors_are_cleaned_up(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    proj.mkdir()
    tracker = _tracker(proj)
    sync(
        catalog=scan_catalog(cat),
        project_root=proj,
        selection=[DescriptorId("command", "ship"), DescriptorId("mcpServer", "github")],
        tracker=tracker,
        echo=lambda _: None,
    )

    (cat / "commands" / "ship.md").unlink()
    (cat / "mcp-servers" / "github.json").unlink()
    report = sync(
        catalog=scan_catalog(cat), project_root=proj, selection=[], tracker=tracker, echo=lambda _: None
    )

    assert report.removed == ["command:ship", "mcpServer:github"]
    assert not (proj / ".claude" / "commands" / "ship.md").exists()
    assert json.loads((proj / ".mcp.json").read_text(encoding="utf-8")) == {"mcpServers": {}}
    assert tracker.tracked_ids() == frozenset()


def test_unusable_state_location_aborts_before_any_write(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    proj.mkdir()
    (proj / ".hands").write_text("in the way", encoding="utf-8")

    with pytest.raises(TrackerLocationError):
        sync(
            catalog=scan_catalog(cat),
            project_root=proj,
            selection=[DescriptorId("command", "ship")],
            tracker=_tracker(proj),
            echo=lambda _: None,
        )
    assert not (proj / ".claude").exists()


def test_plan_keeps_orphans_unless_asked(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    proj.mkdir()
    catalog = scan_catalog(cat)
    tracker = _tracker(proj)
    skill = DescriptorId("skill", "pr-review")
    agent = DescriptorId("agent", "reviewer")
    server = DescriptorId("mcpServer", "github")

    plan = plan_selection(catalog, tracker.read(), select=[skill])
    assert plan.direct == frozenset({skill})
    assert plan.selected == frozenset({skill, agent, server})

    sync(
        catalog=catalog,
        project_root=proj,
        selection=plan.selected,
        direct=plan.direct,
        tracker=tracker,
        echo=lambda _: None,
    )
    record = tracker.read()
    assert record.get(skill).direct is True
    assert record.get(agent).direct is False

    statuses = classify(catalog.descriptors, project_root=proj, targets=("claude",), record=record, environ={})
    plan = plan_selection(catalog, record, statuses=statuses, deselect=[skill])
    assert plan.orphans == frozenset({agent, server})
    assert plan.selected == frozenset({agent, server})

    plan = plan_selection(catalog, record, statuses=statuses, deselect=[skill], remove_orphans=True)
    assert plan.selected == frozenset()


def test_plan_reports_unknown_and_still_required_ids(tmp_path: Path) -> None:
    catalog = scan_catalog(_catalog(tmp_path))
    tracker = _tracker(tmp_path / "proj")
    skill = DescriptorId("skill", "pr-review")
    agent = DescriptorId("agent", "reviewer")
    ghost = DescriptorId("command", "ghost")

    plan = plan_selection(catalog, tracker.read(), select=[skill, ghost], deselect=[agent])
    assert plan.unknown == frozenset({ghost})
    assert plan.required == frozenset({agent})
    assert agent in plan.selected
    assert ghost not in plan.selected

    only = plan_selection(catalog, tracker.read(), select=[DescriptorId("command", "ship")], keep_installed=False)
    assert only.selected == frozenset({DescriptorId("command", "ship")})


def test_partial_multi_target_failure_is_not_rolled_back(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    _write(proj / ".cursor" / "mcp.json", json.dumps({"mcpServers": {"github": {"command": "someone-elses"}}}))
    catalog = scan_catalog(cat)
    tracker = _tracker(proj)
    github = DescriptorId("mcpServer", "github")
    targets = ("claude", "cursor")

    report = sync(
        catalog=catalog,
        project_root=proj,
        selection=[github, DescriptorId("hook", "notify")],
        tracker=tracker,
        targets=targets,
        echo=lambda _: None,
    )

    assert [i for i, _ in report.failed] == ["mcpServer:github"]
    assert report.installed == ["hook:notify"]
    assert json.loads((proj / ".mcp.json").read_text(encoding="utf-8")) == {
        "mcpServers": {"github": {"command": "gh-mcp", OWNERSHIP_MARKER: "github"}}
    }
    assert json.loads((proj / ".cursor" / "mcp.json").read_text(encoding="utf-8")) == {
        "mcpServers": {"github": {"command": "someone-elses"}}
    }
    assert tracker.lookup(github) is None

    statuses = classify(catalog.descriptors, project_root=proj, targets=targets, record=tracker.read(), environ={})
    assert {s.descriptor.id: s.status for s in statuses}[github] == Status.OUTDATED


def test_untracked_owned_entries_are_removed_when_deselected(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    mine = {"matcher": "*", "hooks": [{"type": "command", "command": "mine"}]}
    _write(
        proj / ".claude" / "settings.json",
        json.dumps(
            {
                "hooks": {
                    "Stop": [
                        {"matcher": "*", "hooks": [{"type": "command", "command": "old"}], OWNERSHIP_MARKER: "notify"},
                        mine,
                    ]
                }
            }
        ),
    )
    _write(
        proj / ".cursor" / "mcp.json",
        json.dumps({"mcpServers": {"github": {"command": "old", OWNERSHIP_MARKER: "github"}, "other": {"command": "x"}}}),
    )
    tracker = _tracker(proj)

    report = sync(catalog=scan_catalog(cat), project_root=proj, selection=[], tracker=tracker, echo=lambda _: None)

    assert report.removed == ["mcpServer:github", "hook:notify"]
    assert json.loads((proj / ".claude" / "settings.json").read_text(encoding="utf-8"))["hooks"] == {"Stop": [mine]}
    assert json.loads((proj / ".cursor" / "mcp.json").read_text(encoding="utf-8")) == {
        "mcpServers": {"other": {"command": "x"}}
    }
    assert tracker.tracked_ids() == frozenset()


def test_corrupt_record_names_never_reach_the_filesystem(tmp_path: Path) -> None:
    cat = _catalog(tmp_path)
    proj = tmp_path / "proj"
    _write(proj / ".claude" / "settings.json", json.dumps({"model": "opus"}))
    _write(proj / "src" / "main.py", "print('hi')\n")
    entry = {"fingerprint": "sha256:1", "installedAt": "2024-01-01T00:00:00Z"}
    _write(
        proj / ".hands" / "state" / "installed.json",
        json.dumps({"version": 1, "components": {"skill": {"..": entry, "../../src": entry}, "command": {".": entry}}}),
    )

    report = sync(
        catalog=scan_catalog(cat), project_root=proj, selection=[], tracker=_tracker(proj), echo=lambda _: None
    )

    assert report.removed == []
    assert (proj / ".claude" / "settings.json").exists()
    assert (proj / "src" / "main.py").exists()


def test_file_targets_outside_claude_are_refused(tmp_path: Path) -> None:
    proj = tmp_path / "proj"
    _write(proj / "src" / "main.py", "print('hi')\n")
    src = tmp_path / "catalog" / "commands" / "evil.md"
    _write(src, "overwrite")
    evil = Descriptor(name="evil", category="command", payload=FilePayload(source=src, target=Path(".claude/../src")))
    lines: list[str] = []

    report = sync(
        catalog=build_catalog([evil]),
        project_root=proj,
        selection=[evil.id],
        tracker=_tracker(proj),
        echo=lines.append,
    )

    assert [i for i, _ in report.failed] == ["command:evil"]
    assert any("outside .claude/" in line for line in lines)
    assert (proj / "src" / "main.py").read_text(encoding="utf-8") == "print('hi')\n"

    for rel in (Path(".claude/skills/../../src"), Path(".claude/skills"), Path("/etc/passwd"), Path("src")):
        with pytest.raises(UnsafeTargetError):
            checked_target("skill:x", proj, rel)
    assert checked_target("skill:x", proj, Path(".claude/skills/x")) == proj / ".claude" / "skills" / "x"
