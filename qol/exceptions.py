class PipelineError(Exception):
    """
    Base class for fatal errors raised by the analysis stages.
    """


class InputError(PipelineError):
    """
    Raised when input directories are missing or empty, or no file matches the expected pattern.
    """


class ConfigError(PipelineError):
    """
    Raised when the sample metadata sheet is missing, malformed, or lacks required columns.
    """


class JoinMismatchError(PipelineError):
    """
    Raised in strict mode when insertion records have no matching metadata row.
    """
    def __init__(self, missing_keys, n_rows):
        self.missing_keys = list(missing_keys)
        self.n_rows = n_rows
        message = f"{n_rows} insertion records have no metadata for file_id: {', '.join(self.missing_keys)}"
        super().__init__(message)


class ExternalFetchError(PipelineError):
    """
    Raised when a reference resource cannot be downloaded after all retries.
    """
    def __init__(self, url, reason):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class ReferenceDataError(PipelineError):
    """
    Raised when the chromosome sizes or gene model cannot be partitioned into feature classes.
    """
