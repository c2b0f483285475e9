"""Exception hierarchy for the translation pipeline."""


class TranslationError(Exception):
    """Base class for every error raised by the translator."""


class ConfigurationError(TranslationError):
    """The operator's environment is not runnable (missing prompt, glossary, credential)."""


class GlossaryError(ConfigurationError):
    """A glossary file exists but could not be read or has an invalid structure."""


class RemoteCallError(TranslationError):
    """The remote model could not be reached or kept failing after retries."""


class InvalidResponseError(RemoteCallError):
    """The remote model answered without any usable completion."""


class ForcedTermMissingError(TranslationError):
    """A glossary term flagged `force` did not survive translation verbatim."""

    def __init__(self, terms):
        self.terms = list(terms)
        super().__init__(f"Forced glossary terms missing from translation: {', '.join(self.terms)}")


class StructuralError(TranslationError):
    """Slices handed to the merger violate the chunking invariants."""


class MergeFailedError(StructuralError):
    pass


class InconsistentSlicesError(StructuralError):
    pass
