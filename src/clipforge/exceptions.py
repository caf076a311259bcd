"""
ClipForge Exception Hierarchy

Structured exception types raised while compiling a composition into a
timeline. All exceptions inherit from ClipForgeError for easy catching.

Usage:
    from clipforge.exceptions import ProviderError, SerializationError

    try:
        result = export_timeline(root, format="interchange-xml")
    except SerializationError as e:
        logger.error(f"Export failed: {e}")

Recovery rules:
    ResolutionError     skipped by the scene walker with a warning
    ProviderError       fatal in strict mode, placeholder in default mode
    CacheIOError        read = cache miss, write = logged and ignored
    SerializationError  always fatal
"""

from typing import Optional, Sequence


class ClipForgeError(Exception):
    """Base exception for all ClipForge errors."""
    pass


# =============================================================================
# Composition Errors
# =============================================================================

class CompositionError(ClipForgeError):
    """Composition document or node tree is malformed."""
    pass


class ResolutionError(ClipForgeError):
    """A node cannot be resolved (no prompt, no source, no model bound)."""

    def __init__(self, message: str, node_type: Optional[str] = None):
        super().__init__(message)
        self.node_type = node_type


# =============================================================================
# Provider Errors
# =============================================================================

class ProviderError(ClipForgeError):
    """The bound generation provider failed."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.model_id = model_id


class AbortedError(ClipForgeError):
    """Render was aborted before a provider call could be issued."""
    pass


# =============================================================================
# Cache Errors
# =============================================================================

class CacheIOError(ClipForgeError):
    """The durable cache could not be read or written."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


# =============================================================================
# Timeline / Export Errors
# =============================================================================

class TimelineError(ClipForgeError):
    """Timeline intermediate structure is inconsistent."""
    pass


class SerializationError(TimelineError):
    """Timeline cannot be expressed in the requested interchange format."""

    def __init__(self, message: str, format: Optional[str] = None):
        super().__init__(message)
        self.format = format


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(ClipForgeError):
    """Invalid configuration value."""
    pass


# =============================================================================
# Subprocess Errors
# =============================================================================

class CommandError(ClipForgeError):
    """External command exited with a non-zero status."""

    def __init__(self, cmd: Sequence[str], returncode: int, stdout: str = "", stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        tail = (stderr or "").strip().splitlines()[-1:] or [""]
        super().__init__(f"Command failed ({returncode}): {' '.join(self.cmd)} {tail[0]}".rstrip())


class PlaceholderError(ClipForgeError):
    """Synthetic placeholder media could not be produced."""
    pass
