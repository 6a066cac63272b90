from __future__ import annotations

EXIT_OK = 0
EXIT_UNABLE_TO_DOWNLOAD_REQUIRED_PACKAGE = 1
EXIT_PACKAGE_FAILED_SIGNATURE_VALIDATION = 2
EXIT_BOOTSTRAP_MANIFEST_FAILURE = 3
EXIT_INTERNAL_ERROR = 4
EXIT_UNKNOWN_COMPONENT_TYPE = 10
EXIT_INSTALLED_BUT_NOT_FUNCTIONING = 12
EXIT_COMPONENT_INSTALL_FAILED = 13
EXIT_CANCELLED = 130


class BootstrapError(RuntimeError):
    """A fatal condition for the current run. Carries the process exit code."""

    exit_code = EXIT_INTERNAL_ERROR


class DownloadError(BootstrapError):
    """No candidate source produced the required artifact."""

    exit_code = EXIT_UNABLE_TO_DOWNLOAD_REQUIRED_PACKAGE


class SignatureError(BootstrapError):
    """Candidates were found, but none passed the trust gate."""

    exit_code = EXIT_PACKAGE_FAILED_SIGNATURE_VALIDATION


class ManifestError(BootstrapError):
    exit_code = EXIT_BOOTSTRAP_MANIFEST_FAILURE


class InternalError(BootstrapError):
    """A precondition was violated (programming defect, not environment)."""

    exit_code = EXIT_INTERNAL_ERROR


class UnknownComponentTypeError(BootstrapError):
    exit_code = EXIT_UNKNOWN_COMPONENT_TYPE


class InstallError(BootstrapError):
    exit_code = EXIT_COMPONENT_INSTALL_FAILED


class NotFunctioningError(BootstrapError):
    """The install pass succeeded but the target engine still cannot be found."""

    exit_code = EXIT_INSTALLED_BUT_NOT_FUNCTIONING


class Cancelled(Exception):
    """User-requested shutdown. A clean early exit, not a failure."""

    exit_code = EXIT_CANCELLED


def require(condition: object, message: str) -> None:
    if not condition:
        raise InternalError(f"Internal error: {message}")
