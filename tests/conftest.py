import os

from fixtures.env import *  # noqa


def pytest_configure(config):
    """Keep the developer's environment from leaking into configure and settings."""
    for var in (
        "RUST_LOG",
        "CHROME_PATH",
        "REASONKIT_HEADLESS",
        "REASONKIT_DISABLE_GPU",
        "MCP_TIMEOUT_SECS",
        "TOKIO_WORKER_THREADS",
    ):
        os.environ.pop(var, None)
    for var in [v for v in os.environ if v.startswith("RKHOST_")]:
        os.environ.pop(var)


pytest_configure(None)

from fixtures.host import *  # noqa
