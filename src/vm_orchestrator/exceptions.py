"""Custom exceptions."""


class VmOrchestratorError(Exception):
    """Base class for all custom exceptions.

    Useful to catch all of them.
    """


class DependencyMissingError(VmOrchestratorError):
    """A required external tool is not available."""

    def __init__(self, dependency: str, hint: str | None = None):
        """Raise the DependencyMissingError.

        Args:
            dependency (str): Name of the missing tool or component.
            hint (str | None): Optional extra context for the user.
        """
        self.dependency = dependency
        msg = f"Missing dependency: {dependency}"
        if hint:
            msg = f"{msg} ({hint})"
        super().__init__(msg)


class ResourceNotFoundError(VmOrchestratorError):
    """The target VM is not known to the controller."""

    def __init__(self, name: str, available: list[str] | None = None):
        self.name = name
        msg = f"VM '{name}' not found."
        if available:
            msg = f"{msg} Available VMs: {', '.join(available)}"
        super().__init__(msg)


class UnexpectedStateError(VmOrchestratorError):
    """The VM reports a state we do not know how to handle."""

    def __init__(self, name: str, state: str):
        self.name = name
        self.state = state
        super().__init__(f"Unexpected VM state for '{name}': {state}. Manual intervention required.")


class ControllerError(VmOrchestratorError):
    """A controller command (start, shutdown, ...) failed."""


class ProbeTimeoutError(VmOrchestratorError):
    """A hard probe tier did not become ready within its own timeout."""

    def __init__(self, probe: str, elapsed: float, detail: str | None = None):
        self.probe = probe
        self.elapsed = elapsed
        msg = f"Probe '{probe}' timed out after {elapsed:.1f}s"
        if detail:
            msg = f"{msg} (last: {detail})"
        super().__init__(msg)


class GlobalTimeoutError(VmOrchestratorError):
    """The aggregate readiness budget was exhausted."""

    def __init__(self, timeout_s: float, probe: str | None = None, detail: str | None = None):
        self.timeout_s = timeout_s
        self.probe = probe
        msg = f"Readiness wait exceeded global timeout of {timeout_s:g}s"
        if probe:
            msg = f"{msg} while waiting for '{probe}'"
        if detail:
            msg = f"{msg} (last: {detail})"
        super().__init__(msg)


class WaitCancelledError(VmOrchestratorError):
    """The wait was cancelled by the caller (e.g. SIGINT)."""


class ReadinessFailedError(VmOrchestratorError):
    """A probe reported a definitive error."""
