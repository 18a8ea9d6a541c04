"""
Failure taxonomy for the configure workflow.

Every failure is fatal to a single configure invocation. Each error carries
the phase it belongs to so the command line can print one diagnostic of the
form ``<phase> error: <detail>``.
"""


class LibraryError(Exception):
    """Raised by a container library backend when an operation fails."""


class ExpressionError(ValueError):
    """Raised when a requirement expression is malformed or names an unknown rule."""


class ConfigureError(Exception):
    """Base class for fatal configure failures."""

    phase = "configure"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.phase} error: {self.message}"


class AllocationError(ConfigureError):
    """The library context or container config could not be created."""

    phase = "allocation"


class InitializationError(ConfigureError):
    """The library context or the container handle could not be set up."""

    phase = "initialization"


class DetectionError(ConfigureError):
    """Driver or device metadata could not be queried."""

    phase = "detection"


class RequirementError(ConfigureError):
    """A requirement expression was malformed or not satisfied."""

    phase = "requirement"

    def __init__(self, message: str, requirement: str):
        super().__init__(message)
        self.requirement = requirement


class DeviceSelectionError(ConfigureError):
    """A device specification token did not resolve to a device."""

    phase = "device"

    def __init__(self, token: str):
        super().__init__(f"unknown device id: {token}")
        self.token = token


class MountError(ConfigureError):
    """Driver or device mount failed. Earlier mounts are not rolled back."""

    phase = "mount"


class LdcacheError(ConfigureError):
    """The container's dynamic linker cache could not be refreshed."""

    phase = "ldcache"
