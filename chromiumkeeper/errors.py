"""Exception hierarchy for browser supervision internals."""


class ChromiumKeeperError(Exception):
    """Base error type for all supervisor-internal failures."""


class LaunchError(ChromiumKeeperError):
    """The OS refused to start the browser binary."""

    def __init__(self, binary_path: str, message: str = ""):
        super().__init__(message or f"failed to launch {binary_path}")
        self.binary_path = binary_path
