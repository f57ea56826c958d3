"""Synthwiki - an encyclopedia written on demand by a language model."""

__version__ = "0.1.0"

from synthwiki.core.config import SynthwikiConfig, config

__all__ = ["SynthwikiConfig", "config", "__version__"]
