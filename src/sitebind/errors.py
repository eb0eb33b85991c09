"""Error types raised while binding a command to a deployed site."""


class BindError(Exception):
    """Base class for errors that halt or abort a binding."""


class OutdatedMetadataError(BindError):
    """A metadata record exists but lacks fields required for its kind.

    Raised instead of treating the record as absent: polling again cannot fix
    a record written by an older platform version.
    """

    def __init__(self, record_type: str, missing: list[str]):
        self.record_type = record_type
        self.missing = missing
        super().__init__(f"{record_type} metadata is missing {', '.join(missing)}")


class ProcessTerminationError(BindError):
    """The previous process tree could not be terminated."""

    def __init__(self, pid: int, survivors: list[int]):
        self.pid = pid
        self.survivors = survivors
        super().__init__(
            f"Failed to terminate process tree of {pid}; still running: {', '.join(map(str, survivors))}"
        )


class ProjectNotFoundError(BindError):
    """No project file was found in the working directory or its parents."""


class MissingCommandError(BindError):
    """No command was given to bind."""


class ProjectConfigError(BindError):
    """The project file exists but cannot be parsed or validated."""
