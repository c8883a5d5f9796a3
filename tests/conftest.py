import os
import sys
import time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))


def pytest_addoption(parser):
    parser.addoption(
        "--firesim-debug",
        action="store_true",
        help="Enable solver debug logging during tests",
    )
    parser.addoption(
        "--run-slow",
        action="store_true",
        help="Run tests on full-size grids",
    )


def pytest_configure(config):
    if config.getoption("--firesim-debug"):
        os.environ["FIRESIM_DEBUG"] = "1"
        from firesim.debug import enable

        enable(True)
    config.addinivalue_line("markers", "slow: tests on full-size grids")


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-slow"):
        return
    skip = pytest.mark.skip(reason="need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip)


_RUN_LOG = "pytest_run_times.log"


def pytest_sessionstart(session):
    session._start_time = time.time()


def pytest_sessionfinish(session, exitstatus):
    duration = time.time() - session._start_time
    log_file = Path(session.config.rootpath) / _RUN_LOG
    history = int(os.environ.get("PYTEST_RUN_TIME_HISTORY", "50"))
    line = f"{time.strftime('%Y-%m-%d %H:%M:%S')} {duration:.2f}"

    lines = log_file.read_text().splitlines() if log_file.exists() else []
    lines.append(line)
    lines = lines[-history:]
    log_file.write_text("\n".join(lines) + "\n")

    reporter = session.config.pluginmanager.get_plugin("terminalreporter")
    if reporter:
        reporter.write_line("Recent pytest run times:")
        for entry in lines[-5:]:
            reporter.write_line(f"  {entry}")

