"""Clarity - LLM analysis layer for a personal wellness journal"""

from __future__ import annotations

__version__ = "1.0.0"


# Lazy imports so lightweight modules (hashing, repair) load without the HTTP stack
def __getattr__(name: str):
    if name == "ClaritySession":
        from clarity.session import ClaritySession

        return ClaritySession

    if name in ("ModelGateway", "CallOptions"):
        from clarity.llm import gemini

        return getattr(gemini, name)

    if name == "parse_model_json":
        from clarity.llm.repair import parse_model_json

        return parse_model_json

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = ["CallOptions", "ClaritySession", "ModelGateway", "parse_model_json"]
