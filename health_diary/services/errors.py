"""Exception types raised by the processing pipeline and its collaborators."""


class PipelineError(Exception):
    """Base class for pipeline failures."""


class ProviderError(PipelineError):
    """An external provider call failed."""


class SubmissionError(ProviderError):
    """The provider rejected or never received a new job."""


class PollingError(ProviderError):
    """Checking an outstanding job failed; the job itself may still be fine."""


class AnalysisError(ProviderError):
    """The analysis call failed (timeout, non-success response)."""


class ResultShapeError(ProviderError):
    """A provider answered, but the payload does not have the expected structure."""


class StorageError(PipelineError):
    """The blob store could not complete an operation."""


class StaleStateError(PipelineError):
    """A conditional record update lost against a concurrent writer."""
