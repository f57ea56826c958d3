"""Exception types raised by the Synthwiki core.

Cache misses, rejected topics and images without a registered prompt are
ordinary outcomes and are not represented here.  Only conditions that end
a request (or a single image request) are exceptions.
"""

from __future__ import annotations


class SynthwikiError(Exception):
    """Base class for all Synthwiki errors."""


class CollaboratorError(SynthwikiError):
    """An external API call failed or returned an unusable response."""


class LLMError(CollaboratorError):
    """The language model API call failed."""


class ImageGenerationError(CollaboratorError):
    """The image API failed to produce or deliver an image."""


class GenerationError(SynthwikiError):
    """Article generation failed; no partial article is produced."""


class MalformedModelOutputError(GenerationError):
    """Model output could not be decoded even after structural repair.

    Attributes:
        raw: The (possibly truncated) text that failed to decode.
    """

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw
