"""Exception types raised by the sync server pipeline."""


class ManifestError(Exception):
    """A package.json could not be used."""

    def __init__(self, path, message: str):
        self.path = str(path)
        super().__init__(f"{message}: {self.path}")


class ManifestReadError(ManifestError):
    """The manifest is missing, unreadable or not valid JSON."""


class ManifestValidationError(ManifestError):
    """The manifest parsed but a known field has the wrong shape."""


class WorkspaceManifestError(Exception):
    """pnpm-workspace.yaml exists but cannot be read or parsed."""


class PipelineAborted(Exception):
    """A pipeline run was superseded by a newer trigger.

    Not a failure: callers log it at info level and move on.
    """
