from envrec import db
from envrec.settings import Settings


def test_events_are_journaled(settings):
    db.log_event("info", "hello", resource="toolchain:node")
    db.log_event("WARN", "careful")
    rows = db.latest_events(limit=5)
    assert [r["message"] for r in rows] == ["careful", "hello"]
    assert rows[1]["level"] == "INFO"
    assert rows[1]["resource"] == "toolchain:node"


def test_console_line(settings, capsys):
    db.log_event("ERROR", "boom", resource="service:twenty_pg")
    assert "[service:twenty_pg] boom" in capsys.readouterr().err


def test_journal_disabled_without_path(capsys):
    db.configure(Settings(db_path=None, color=False))
    db.log_event("INFO", "only console")
    assert db.latest_events() == []
    assert "only console" in capsys.readouterr().err


def test_directory_db_path(tmp_path):
    d = tmp_path / "state"
    d.mkdir()
    db.configure(Settings(db_path=str(d), color=False))
    try:
        db.log_event("INFO", "x")
        assert (d / "envrec.db").exists()
    finally:
        db.configure(Settings(db_path=None, color=False))
