"""
Configuration for lawline.

config.yaml is read once and cached; string values may reference the
environment as ${VAR} or ${VAR:-default}. LAWLINE_CONFIG points at another
file.

The one setting that can change while the server runs is the model. It lives
in override.yaml next to config.yaml (`model: <name>`), is written by the
`lawline model` command and re-read whenever the file's mtime changes.
"""

import logging
import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_ROOT = Path(__file__).parent.parent
_CONFIG_PATH = Path(os.environ.get("LAWLINE_CONFIG") or _ROOT / "config.yaml")
_OVERRIDE_PATH = _ROOT / "override.yaml"

_config: dict | None = None

_override_model: str | None = None
_override_mtime: float = 0.0

_ENV_REF = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _expand(value):
    """Substitute environment references in every string of a YAML tree."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1)) or m.group(2) or "", value)
    if isinstance(value, dict):
        return {k: _expand(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(v) for v in value]
    return value


def load_config(path: Path | None = None) -> dict:
    """Read and cache config.yaml. Later calls return the cached dict."""
    global _config
    if _config is None:
        config_path = Path(path or _CONFIG_PATH)
        if not config_path.exists():
            raise FileNotFoundError(f"Config not found: {config_path}")
        with open(config_path, encoding="utf-8") as f:
            _config = _expand(yaml.safe_load(f) or {})
    return _config


get_config = load_config


def model_override() -> str | None:
    """The model named in override.yaml, or None when there is no override."""
    global _override_model, _override_mtime

    try:
        mtime = _OVERRIDE_PATH.stat().st_mtime
    except FileNotFoundError:
        _override_model, _override_mtime = None, 0.0
        return None
    except OSError:
        return _override_model

    if mtime != _override_mtime:
        try:
            with open(_OVERRIDE_PATH, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            # keep the last good value
            logger.warning("Ignoring unreadable %s: %s", _OVERRIDE_PATH, e)
            return _override_model
        model = data.get("model") if isinstance(data, dict) else None
        _override_model = str(model) if model else None
        _override_mtime = mtime
        logger.info("Model override is now %s", _override_model or "unset")

    return _override_model


def set_model_override(model: str | None) -> bool:
    """Write (or with None, remove) the model override. Returns True on success."""
    global _override_mtime
    try:
        if model:
            with open(_OVERRIDE_PATH, "w", encoding="utf-8") as f:
                yaml.safe_dump({"model": model}, f, allow_unicode=True)
        else:
            _OVERRIDE_PATH.unlink(missing_ok=True)
    except OSError as e:
        logger.error("Could not update %s: %s", _OVERRIDE_PATH, e)
        return False
    # force a re-read even if the write landed within the same mtime tick
    _override_mtime = 0.0
    return True
