# hirehub/services/scorers/base.py
"""
Pluggable generative-scorer loader.

Adapters expose `async score(prompt, model) -> str` and return the model's raw
text; parsing and validation happen in `hirehub.services.grading`.

    SCORER_ADAPTER: "mock" (default), "http" or "gemini"
"""

import importlib
import logging
from typing import Dict, Protocol

logger = logging.getLogger(__name__)

_ADAPTER_MODULES: Dict[str, str] = {
    "mock": "hirehub.services.scorers.mock_adapter",
    "http": "hirehub.services.scorers.http_adapter",
    "gemini": "hirehub.services.scorers.gemini_adapter",
}


class Scorer(Protocol):
    name: str

    async def score(self, prompt: str, model: str) -> str: ...


def get_scorer(name: str, settings=None, **kwargs) -> Scorer:
    """Instantiate the named adapter; unknown names are tried as a dotted module path."""
    module_name = _ADAPTER_MODULES.get(name, name)
    try:
        mod = importlib.import_module(module_name)
    except ModuleNotFoundError as exc:
        raise ValueError(f"Unknown scorer adapter: {name}") from exc
    if not hasattr(mod, "build"):
        raise RuntimeError(f"Scorer adapter {name} does not expose build()")
    scorer = mod.build(settings, **kwargs)
    logger.info("Scorer adapter loaded: %s", getattr(scorer, "name", name))
    return scorer
