"""SONA exception hierarchy.

All exceptions inherit from SonaError and carry a three-part structure:
message (what happened), detail (technical context), suggestion (what to do next).

Validation problems are never raised; they come back as ValidationResult
objects. Only the explicit failures below surface as exceptions.
"""


class SonaError(Exception):
    """Base exception for all SONA errors."""

    def __init__(
        self,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.detail:
            parts.append(f"Detail: {self.detail}")
        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")
        return " | ".join(parts)


class VersionNotFoundError(SonaError):
    """Raised when a template version needed for rollback or compare is missing."""

    def __init__(
        self,
        template_id: str,
        version: int,
        suggestion: str | None = "List the template history to see available versions",
    ) -> None:
        self.template_id = template_id
        self.version = version
        super().__init__(
            f"Version not found: {version} for template {template_id}",
            None,
            suggestion,
        )


class SettingsParseError(SonaError):
    """Raised when a settings document is not a valid JSON object."""

    def __init__(
        self,
        message: str = "Invalid JSON format",
        detail: str | None = None,
        suggestion: str | None = "Export the current settings to see the expected shape",
    ) -> None:
        super().__init__(message, detail, suggestion)


class SandboxLimitError(SonaError):
    """Raised when a sandbox session already holds its maximum content count."""

    def __init__(
        self,
        limit: int,
        detail: str | None = None,
        suggestion: str | None = "Clear the session content or open a new session",
    ) -> None:
        self.limit = limit
        super().__init__(
            f"Maximum content limit ({limit}) reached for this session",
            detail,
            suggestion,
        )
