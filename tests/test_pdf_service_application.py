import logging
import os
import subprocess
import sys

import pytest

from pdf_service import pdf_service_application


@pytest.fixture(autouse=True)
def clean_server_env(monkeypatch, tmp_path):
    """Isolate log output and the HOST/PORT/WORKERS settings written by the multi-worker start."""
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    for name in ("HOST", "PORT", "WORKERS"):
        monkeypatch.delenv(name, raising=False)


def test_main_runs_single_worker(monkeypatch, tmp_path):
    """Test that main runs correctly in single-worker mode."""
    log_dir = tmp_path / "logs"

    # Mock command line arguments (single-worker mode, default)
    monkeypatch.setattr(sys, "argv", ["pdf_service_application.py", "--port", "9999"])

    called_with = {}

    def fake_start_server_single_worker(host, port):
        called_with["host"] = host
        called_with["port"] = port

    monkeypatch.setattr(pdf_service_application, "start_server_single_worker", fake_start_server_single_worker)

    pdf_service_application.main()

    assert called_with == {"host": "0.0.0.0", "port": 9999}
    assert log_dir.exists()
    assert any(log_dir.glob("pdf-service_*.log"))


def test_main_default_port(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["pdf_service_application.py"])

    called_with = {}

    def fake_start_server_single_worker(host, port):
        called_with["port"] = port

    monkeypatch.setattr(pdf_service_application, "start_server_single_worker", fake_start_server_single_worker)

    pdf_service_application.main()

    assert called_with["port"] == 3005


def test_main_runs_multi_worker(monkeypatch, tmp_path):
    """Test that main runs correctly in multi-worker mode."""
    log_dir = tmp_path / "logs"

    monkeypatch.setattr(sys, "argv", ["pdf_service_application.py", "--port", "9999", "--workers", "4"])

    logger = logging.getLogger("test")

    def fake_start_server_multi_worker(host, port, workers):
        logger.info(f"Fake multi-worker server started on {host}:{port} with {workers} workers")

    monkeypatch.setattr(pdf_service_application, "start_server_multi_worker", fake_start_server_multi_worker)

    pdf_service_application.main()

    assert log_dir.exists()
    assert any(log_dir.glob("pdf-service_*.log"))


def test_main_env_overrides_cli_args(monkeypatch):
    """Test that environment variables override command line arguments."""
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("PORT", "8888")
    monkeypatch.setenv("WORKERS", "1")

    monkeypatch.setattr(sys, "argv", ["pdf_service_application.py", "--host", "0.0.0.0", "--port", "9999", "--workers", "3"])

    called_with = {}

    def fake_start_server_single_worker(host, port):
        called_with["host"] = host
        called_with["port"] = port

    monkeypatch.setattr(pdf_service_application, "start_server_single_worker", fake_start_server_single_worker)

    pdf_service_application.main()

    assert called_with == {"host": "127.0.0.1", "port": 8888}


def test_main_workers_greater_than_one_uses_multi_mode(monkeypatch):
    """Test that workers>1 uses multi-worker mode."""
    monkeypatch.setattr(sys, "argv", ["pdf_service_application.py", "--host", "127.0.0.1", "--port", "9999", "--workers", "3"])

    called_with = {}

    def fake_start_server_multi_worker(host, port, workers):
        called_with["host"] = host
        called_with["port"] = port
        called_with["workers"] = workers

    monkeypatch.setattr(pdf_service_application, "start_server_multi_worker", fake_start_server_multi_worker)

    pdf_service_application.main()

    assert called_with == {"host": "127.0.0.1", "port": 9999, "workers": 3}


def test_start_server_single_worker_runs_uvicorn(monkeypatch):
    called_with = {}

    def fake_uvicorn_run(app, host, port):
        called_with.update(app=app, host=host, port=port)

    monkeypatch.setattr(pdf_service_application.uvicorn, "run", fake_uvicorn_run)

    pdf_service_application.start_server_single_worker("127.0.0.1", 3005)

    assert called_with["app"] is pdf_service_application.pdf_service_controller.app
    assert called_with["host"] == "127.0.0.1"
    assert called_with["port"] == 3005


def test_start_server_multi_worker_builds_correct_command(monkeypatch):
    """Test that start_server_multi_worker builds correct gunicorn command."""
    commands_run = []

    def fake_subprocess_run(cmd, check=True):  # noqa: ARG001
        commands_run.append(cmd)

        class FakeResult:
            returncode = 0

        return FakeResult()

    monkeypatch.setattr(subprocess, "run", fake_subprocess_run)

    with pytest.raises(SystemExit) as excinfo:
        pdf_service_application.start_server_multi_worker(host="0.0.0.0", port=9080, workers=4)

    assert excinfo.value.code == 0
    # The config is addressed by module name so it resolves from any working directory
    assert commands_run == [["gunicorn", "pdf_service.pdf_service_controller:app", "--config", "python:pdf_service.gunicorn_conf"]]


def test_start_server_multi_worker_sets_env_vars(monkeypatch):
    """Test that start_server_multi_worker sets HOST, PORT and WORKERS env vars."""

    def fake_subprocess_run(cmd, check=True):  # noqa: ARG001
        assert os.environ.get("HOST") == "127.0.0.1"
        assert os.environ.get("PORT") == "8080"
        assert os.environ.get("WORKERS") == "2"

        class FakeResult:
            returncode = 3

        return FakeResult()

    monkeypatch.setattr(subprocess, "run", fake_subprocess_run)

    with pytest.raises(SystemExit) as excinfo:
        pdf_service_application.start_server_multi_worker(host="127.0.0.1", port=8080, workers=2)

    # Exit code of gunicorn is passed on
    assert excinfo.value.code == 3
