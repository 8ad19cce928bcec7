from app.exporter import logging_utils, utils


def test_export_event_label_and_phase(monkeypatch):
    events: list[str] = []
    monkeypatch.setattr(logging_utils, "log_line", lambda msg: events.append(msg))

    logging_utils._export_event("state", phase="retry_decision", kind="capped")

    assert events
    line = events[-1]
    assert line.startswith("[EXPORTER][STATE]")
    assert "phase='retry_decision'" in line
    assert "kind='capped'" in line


def test_export_event_phase_only_becomes_label(monkeypatch):
    events: list[str] = []
    monkeypatch.setattr(logging_utils, "log_line", lambda msg: events.append(msg))

    logging_utils._export_event(phase="nav", step="goto")

    assert events == ["[EXPORTER][NAV] step='goto'"]


def test_export_event_never_raises(monkeypatch):
    def broken(msg):
        raise OSError("disk full")

    monkeypatch.setattr(logging_utils, "log_line", broken)

    logging_utils._export_event("error", phase="controller")


def test_log_line_writes_to_run_log(tmp_path, monkeypatch):
    from app.exporter import config

    monkeypatch.setattr(config, "DATA_DIR", tmp_path)
    monkeypatch.setattr(config, "LOG_DIR", tmp_path / "logs")
    monkeypatch.setattr(config, "EXPORTS_DIR", tmp_path / "exports")

    path = utils.setup_run_logger()
    utils.log_line("[RUN] hello", "warning")
    for handler in utils.LOGGER.handlers:
        handler.flush()

    assert path.parent == tmp_path / "logs"
    assert path.name.startswith("export_")
    assert "[RUN] hello" in path.read_text(encoding="utf-8")
    assert utils.get_current_log_path() == path


def test_short_id():
    assert utils.short_id("576543210987654321") == "...87654321"
    assert utils.short_id("abc") == "abc"
    assert utils.short_id(None) == ""
