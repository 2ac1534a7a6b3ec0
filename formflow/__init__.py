import os
from pathlib import Path


def _parse_env_line(line: str):
    s = line.strip()
    if s.startswith("export "):
        s = s[len("export "):].lstrip()
    if not s or s.startswith("#") or "=" not in s:
        return None
    key, val = s.split("=", 1)
    val = val.strip()
    if len(val) >= 2 and val[0] == val[-1] and val[0] in {'"', "'"}:
        val = val[1:-1]
    return key.strip(), val


def load_env_file(path: Path) -> int:
    """Copy KEY=VALUE lines from `path` into os.environ without overwriting; returns the count set."""
    if not path.is_file():
        return 0
    loaded = 0
    for line in path.read_text(encoding="utf-8").splitlines():
        pair = _parse_env_line(line)
        if pair and pair[0] and pair[0] not in os.environ:
            os.environ[pair[0]] = pair[1]
            loaded += 1
    return loaded


def _load_dotenv_if_needed() -> None:
    # Keep pytest runs offline and independent of a developer's .env
    if os.getenv("PYTEST_CURRENT_TEST"):
        return
    try:
        load_env_file(Path(os.getenv("FORMFLOW_ENV_FILE", ".env")))
    except (OSError, UnicodeDecodeError):
        # best-effort only
        pass


_load_dotenv_if_needed()
