import logging

import bleproxy.cli.main as cli


class DummyRouter:
    instances = []

    def __init__(self, name, cfg):
        self.name = name
        self.cfg = cfg
        self.started = False
        self.stopped = False
        DummyRouter.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True


def test_main_runs_server_and_stops_bridge(monkeypatch):
    calls = []

    def fake_run(app, host, port, log_level):
        calls.append((app, host, port, log_level))

    monkeypatch.setattr(cli, "MQTTRouter", DummyRouter)
    monkeypatch.setattr(cli.uvicorn, "run", fake_run)
    monkeypatch.setenv("MQTT_BROKER_URL", "mqtt://broker.test:1885")

    cli.main(["--port", "9100", "--host", "127.0.0.1", "--log-level", "debug"])

    app, host, port, level = calls[0]
    assert (host, port, level) == ("127.0.0.1", 9100, "debug")
    assert any(r.path == "/tokendata" for r in app.routes)
    router = DummyRouter.instances[-1]
    assert router.cfg["host"] == "broker.test"
    assert router.cfg["port"] == 1885
    assert router.started and router.stopped


def test_setup_logging_levels():
    cli.setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING
    cli.setup_logging("nonsense")
    assert logging.getLogger().level == logging.INFO


def test_warn_level_from_env_reaches_uvicorn_as_warning(monkeypatch):
    import uvicorn.config

    calls = []

    def fake_run(app, host, port, log_level):
        # uvicorn resolves the name through its own table and rejects unknown ones
        uvicorn.config.LOG_LEVELS[log_level]
        calls.append(log_level)

    monkeypatch.setattr(cli, "MQTTRouter", DummyRouter)
    monkeypatch.setattr(cli.uvicorn, "run", fake_run)
    monkeypatch.setenv("LOG_LEVEL", "WARN")

    cli.main([])

    assert calls == ["warning"]
    assert logging.getLogger().level == logging.WARNING


def test_normalize_log_level():
    assert cli.normalize_log_level("WARN") == "warning"
    assert cli.normalize_log_level("Debug") == "debug"
    assert cli.normalize_log_level("verbose") == "info"
    assert cli.normalize_log_level(None) == "info"
    assert cli.setup_logging("error") == "error"
