import json
from datetime import datetime, timedelta, timezone

import pytest

from agendamerge.main import main, run_once
from agendamerge.state import load_state


def _write_events(path, records):
    path.write_text(json.dumps(records), encoding="utf-8")


def _records():
    base = {
        "external_id": "uid-1",
        "source": "google",
        "title": "Planning",
        "start": "2026-02-05T16:00:00+00:00",
        "end": "2026-02-05T17:00:00+00:00",
        "timezone": "UTC",
    }
    return [
        dict(base, id="g-1", sequence=1, feed_id="primary"),
        dict(base, id="g-2", sequence=1, feed_id="shared", source="ical"),
        {
            "id": "f-1",
            "external_id": "uid-2",
            "sequence": 0,
            "feed_id": "friend-feed",
            "source": "friend",
            "friend_user_id": "u-7",
            "title": "Lunch",
            "start": "2026-02-05T12:00:00",
            "end": "2026-02-05T13:00:00",
        },
    ]


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AGENDAMERGE_TIMEZONE", "America/Phoenix")
    _write_events(tmp_path / "events.json", _records())
    return tmp_path


def test_run_once_prints_agenda_and_persists_colors(workspace, capsys):
    result = run_once(
        events_path=str(workspace / "events.json"),
        config_path=str(workspace / "config.yaml"),
        state_path=str(workspace / "state" / "state.json"),
    )

    out = capsys.readouterr().out
    assert "Resolved 3 events into 2 canonical events; collapsed=1, duplicate_groups=1, tz=America/Phoenix" in out
    assert "Thu 2026-02-05 09:00–10:00  Planning" in out
    assert "Thu 2026-02-05 12:00–13:00  Lunch" in out

    state = load_state(str(workspace / "state" / "state.json"))
    assert state.color_assignments == result.color_assignments
    assert len(set(result.color_assignments.values())) == 2
    assert result.canonical_events["canonical:uid-2:friend-feed"].canonical_event_id == "canonical:uid-2:friend-feed"


def test_unchanged_agenda_skips_state_update(workspace, capsys):
    kwargs = dict(
        events_path=str(workspace / "events.json"),
        config_path=str(workspace / "config.yaml"),
        state_path=str(workspace / "state.json"),
    )
    first = run_once(**kwargs)
    second = run_once(**kwargs)

    out = capsys.readouterr().out
    assert first.color_assignments == second.color_assignments
    assert out.count("No agenda change; skipping state update") == 1


def test_main_reports_bad_event_file(workspace, monkeypatch, capsys):
    _write_events(workspace / "events.json", [{"id": "x"}])
    monkeypatch.setattr(
        "sys.argv",
        ["agendamerge", "--events", str(workspace / "events.json"), "--state", str(workspace / "state.json")],
    )

    with pytest.raises(SystemExit) as excinfo:
        main()

    assert excinfo.value.code == 1
    assert "Could not read events" in capsys.readouterr().out


def _seed_state(path, resolved_iso):
    path.write_text(
        json.dumps(
            {
                "last_hash": "",
                "last_resolved_iso": resolved_iso,
                "color_assignments": {"canonical:uid-2:friend-feed": "#EC4899"},
                "color_ages": {"canonical:uid-2:friend-feed": 0},
            }
        ),
        encoding="utf-8",
    )


def test_persisted_colors_survive_within_ttl(workspace):
    state_path = workspace / "state.json"
    _seed_state(state_path, datetime.now(timezone.utc).isoformat())

    result = run_once(
        events_path=str(workspace / "events.json"),
        config_path=str(workspace / "config.yaml"),
        state_path=str(state_path),
    )

    assert result.color_assignments["canonical:uid-2:friend-feed"] == "#EC4899"
    assert load_state(str(state_path)).color_ages["canonical:uid-2:friend-feed"] < 60


def test_persisted_colors_expire_across_runs(workspace):
    state_path = workspace / "state.json"
    _seed_state(state_path, (datetime.now(timezone.utc) - timedelta(hours=2)).isoformat())

    result = run_once(
        events_path=str(workspace / "events.json"),
        config_path=str(workspace / "config.yaml"),
        state_path=str(state_path),
    )

    assert result.color_assignments == {
        "canonical:uid-1:primary": "#3B82F6",
        "canonical:uid-2:friend-feed": "#10B981",
    }
