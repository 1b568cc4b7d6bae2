from lawline.backends.base import BaseBackend
from lawline.backends.openai_compat import OpenAICompatibleBackend

__all__ = ["BaseBackend", "OpenAICompatibleBackend", "make_backend"]


def make_backend(cfg: dict) -> BaseBackend:
    """Build the completion provider from the `provider` config block."""
    p_cfg = cfg.get("provider", {})
    return OpenAICompatibleBackend(
        name=p_cfg.get("name", "zhipu"),
        url=p_cfg["url"],
        api_key=p_cfg.get("api_key", ""),
        default_model=p_cfg.get("model", "glm-4-flashx"),
        timeout=p_cfg.get("timeout", 120),
    )
