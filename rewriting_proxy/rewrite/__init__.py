from rewriting_proxy.rewrite.base import RewriteEngineBase
from rewriting_proxy.rewrite.dom_engine import DomRewriteEngine
from rewriting_proxy.rewrite.regex_engine import RegexRewriteEngine
from rewriting_proxy.vars import REWRITE_ENGINE

ENGINES: dict[str, type[RewriteEngineBase]] = {
    DomRewriteEngine.name: DomRewriteEngine,
    RegexRewriteEngine.name: RegexRewriteEngine,
}


def rewrite_engine(name: str = REWRITE_ENGINE) -> RewriteEngineBase:
    cls = ENGINES.get(name.lower())
    if cls is None:
        raise ValueError(f"Unknown rewrite engine: {name}")
    return cls()


__all__ = [
    "DomRewriteEngine",
    "RegexRewriteEngine",
    "RewriteEngineBase",
    "rewrite_engine",
]
