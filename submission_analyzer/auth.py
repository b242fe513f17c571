"""Credentials & Canvas connection.

Loads the Canvas and Anthropic credentials from the environment,
establishes the canvasapi connection and verifies it by fetching the
current user.
"""

import os
from pathlib import Path

from canvasapi import Canvas

DEFAULT_DATA_DIR = "../Common-Curriculum-Data"


def load_env_file(path) -> None:
    """Populate os.environ from a KEY=VALUE file without overriding."""
    path = Path(path)
    if not path.exists():
        return
    for line in path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, _, value = line.partition("=")
            os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


def _require(name: str, hint: str) -> str:
    value = os.environ.get(name, "")
    if not value:
        raise EnvironmentError(
            f"{name} environment variable is not set or empty. {hint}"
        )
    return value


def get_api_token() -> str:
    """Load CANVAS_API_TOKEN from environment.

    Raises EnvironmentError if not set or empty.
    """
    return _require(
        "CANVAS_API_TOKEN",
        "Set it with: export CANVAS_API_TOKEN='your-token-here'",
    )


def get_base_url() -> str:
    """Load CANVAS_BASE_URL (the instance root, no /courses suffix)."""
    url = _require(
        "CANVAS_BASE_URL",
        "Set it with: export CANVAS_BASE_URL='https://school.instructure.com'",
    )
    return url.rstrip("/")


def get_anthropic_key() -> str:
    """Load ANTHROPIC_API_KEY, required by the analyze and grade actions."""
    return _require(
        "ANTHROPIC_API_KEY",
        "Set it with: export ANTHROPIC_API_KEY='sk-ant-...'",
    )


def get_data_dir(cli_value=None) -> Path:
    """Resolve the data directory: CLI flag, then env var, then sibling repo."""
    value = cli_value or os.environ.get("SUBMISSION_DATA_DIR") or DEFAULT_DATA_DIR
    return Path(value)


def create_canvas_connection(base_url: str, token: str) -> Canvas:
    """Create and return a canvasapi Canvas instance."""
    return Canvas(base_url, token)


def verify_connection(canvas: Canvas):
    """Verify the Canvas connection by fetching the current user.

    Returns the user object on success.
    Raises ConnectionError on failure.
    """
    try:
        return canvas.get_current_user()
    except Exception as e:
        raise ConnectionError(f"Failed to verify Canvas connection: {e}") from e
