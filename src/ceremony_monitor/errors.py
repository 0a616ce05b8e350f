from __future__ import annotations


class CeremonyMonitorError(RuntimeError):
    """Base class for every error raised while supervising the coordinator."""


class ConfigError(CeremonyMonitorError):
    """Raised when a configuration document cannot be produced."""


class ConfigSerializationError(ConfigError):
    """Raised when a configuration value cannot be rendered as TOML."""


class ConfigWriteError(ConfigError):
    """Raised when a rendered configuration cannot be written to disk."""


class ProcessLaunchError(CeremonyMonitorError):
    """Raised when the coordinator binary cannot be started."""


class ProcessExitError(CeremonyMonitorError):
    """Raised when the coordinator exits with a failing status."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class LineReadError(CeremonyMonitorError):
    """Raised when a single line cannot be read from the coordinator output."""

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        super().__init__(message)
        self.line_number = line_number


class PatternCaptureError(CeremonyMonitorError):
    """Raised when a line matches a pattern but a captured field is invalid."""

    def __init__(self, message: str, *, value: str | None = None) -> None:
        super().__init__(message)
        self.value = value


class AddressParseError(PatternCaptureError):
    """Raised when a captured participant address is malformed."""


class UnknownRoleError(PatternCaptureError):
    """Raised when a captured participant role is neither contributor nor verifier."""


class NumberParseError(PatternCaptureError):
    """Raised when a captured round or chunk number is not an unsigned 64-bit integer."""


class PublishError(CeremonyMonitorError):
    """Raised when an event cannot be published on the ceremony bus."""


class MembershipFileError(CeremonyMonitorError):
    """Raised when a round state file cannot be read or parsed."""


class MissingParticipantError(CeremonyMonitorError):
    """Raised when an expected participant is absent from a round state file."""

    def __init__(self, message: str, *, participant_id: str) -> None:
        super().__init__(message)
        self.participant_id = participant_id
