"""Error taxonomy for result validation, merging, and storage.

Every fatal error carries enough context (file path, field path, expected
vs. actual) to locate the defect without re-running with extra verbosity.

Propagation policy:
    - :class:`ConfigurationError`: missing or malformed configuration and
      schema inputs. Raised immediately, never retried.
    - :class:`ValidationError`: one or more schema or invariant violations.
      Always carries the *complete* list in :attr:`ValidationError.errors`.
    - :class:`NoResultsFoundError`: a merge located zero usable inputs.
    - :class:`DuplicateResultError`: a run set already holds the run.
    - :class:`PartialInputError`: soft. Built for one bad input file during
      a multi-file merge, logged as a warning and recorded, never raised
      out of the merge itself.

Note:
    :class:`ValidationError` shares its name with ``pydantic.ValidationError``.
    Modules that need both import Pydantic's as ``PydanticValidationError``.
"""


class SerialbenchError(Exception):
    """Base class for all aggregator errors."""


class ConfigurationError(SerialbenchError):
    """Missing or malformed configuration / schema input."""


class ValidationError(SerialbenchError):
    """Aggregate of every violation found in one document.

    Attributes:
        errors: Human-readable violation messages, in discovery order.
        source: Optional file path or label of the offending document.

    Example:
        >>> err = ValidationError(["Missing required field: timestamp"])
        >>> str(err)
        'Validation failed:\\nMissing required field: timestamp'
    """

    def __init__(
        self,
        errors: list[str],
        source: str | None = None,
        title: str = "Validation failed",
    ) -> None:
        self.errors: list[str] = list(errors)
        self.source: str | None = source
        header: str = f"{title} ({source})" if source else title
        super().__init__(header + ":\n" + "\n".join(self.errors))


class NoResultsFoundError(SerialbenchError):
    """A merge operation located zero usable input documents."""


class DuplicateResultError(SerialbenchError):
    """A run with the same identity is already part of the run set."""


class PartialInputError(SerialbenchError):
    """One input file of a multi-file merge could not be used.

    Attributes:
        path: The skipped file.
        reason: Why it was skipped.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path: str = path
        self.reason: str = reason
        super().__init__(f"Skipping {path}: {reason}")
