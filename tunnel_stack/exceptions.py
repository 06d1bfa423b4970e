"""Stack exceptions."""


class TunnelStackError(Exception):
    """Base exception for stack provisioning errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class StackConfigError(TunnelStackError):
    """Stack configuration is empty or invalid."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class ImageLookupError(TunnelStackError):
    """No compute image matched the lookup filters."""

    def __init__(
        self,
        message: str,
        operating_system: str | None = None,
        operating_system_version: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operating_system = operating_system
        self.operating_system_version = operating_system_version
