"""
priming.py — the system message that seeds every new conversation.

A built-in prompt is used unless the file named by `priming.path` exists;
that file is hot-reloaded on change via mtime check, no restart needed.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PRIMING = (
    "您正在为一位农民工提供法律帮助。在回答任何问题之前,请确保首先请求用户提供所有必要的具体信息,"
    "以便提供精准、个性化的法律建议。例如,如果用户遇到工伤问题,请询问以下详细信息:"
    "工伤发生的时间、地点、受伤部位、医疗费用以及雇主信息等。如果是工资争议,"
    "请询问工资支付的具体情况、合同是否存在以及任何相关证据。请避免给出一般性或模糊的建议,"
    "确保提供与用户情况完全相关的指导。请在开始提供答案时,结合用户提供的具体信息,"
    "给出详细的操作步骤,并尽可能提供实际的联系方式和地点等信息。"
    "确保每次提供的答案都是用户可以立刻行动并且符合他们法律需求的。"
)

# Hot-reload state
_priming_text: str = ""
_priming_mtime: float = 0.0
_priming_path: Path | None = None


def _get_path(cfg: dict) -> Path | None:
    raw = cfg.get("priming", {}).get("path")
    return Path(raw) if raw else None


def get_priming_prompt(cfg: dict) -> str:
    """Return the current priming prompt, reloading the override file if it changed."""
    global _priming_text, _priming_mtime, _priming_path

    path = _get_path(cfg)
    if path is None or not path.exists():
        return DEFAULT_PRIMING

    if _priming_path != path:
        _priming_path = path
        _priming_mtime = 0.0

    try:
        mtime = path.stat().st_mtime
    except OSError:
        return _priming_text or DEFAULT_PRIMING

    if mtime != _priming_mtime:
        try:
            _priming_text = path.read_text(encoding="utf-8").strip()
            _priming_mtime = mtime
            logger.info("Priming prompt reloaded from %s (%d chars)", path, len(_priming_text))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to reload priming prompt %s: %s", path, e)

    return _priming_text or DEFAULT_PRIMING
