"""Target endpoint resolution."""

from __future__ import annotations

from urllib.parse import urlsplit

from stampede._internal.errors import ConfigError

_ALLOWED_SCHEMES = ("http", "https")


def resolve_target(override: str | None, default: str | None) -> str:
    """Pick the target URL and validate it.

    The override wins when it is non-blank; otherwise the configured
    default is used.

    Args:
        override: Explicit target, e.g. from the command line.
        default: Environment-configured fallback.

    Returns:
        The validated target URL, stripped of surrounding whitespace.

    Raises:
        ConfigError: If neither value is set, or the chosen value is not
            an absolute http(s) URL with a host.
    """
    candidate = (override or "").strip() or (default or "").strip()
    if not candidate:
        msg = "No target URL given; pass one explicitly or set STAMPEDE_TARGET / TARGET"
        raise ConfigError(msg)

    try:
        parts = urlsplit(candidate)
        # Accessing .port validates the port component.
        _ = parts.port
    except ValueError as exc:
        msg = f"Target is not a valid URL: {candidate!r} ({exc})"
        raise ConfigError(msg) from None

    if parts.scheme.lower() not in _ALLOWED_SCHEMES:
        msg = f"Target must use http or https, got: {candidate!r}"
        raise ConfigError(msg)
    if not parts.hostname:
        msg = f"Target has no host: {candidate!r}"
        raise ConfigError(msg)
    if any(ch.isspace() for ch in candidate):
        msg = f"Target contains whitespace: {candidate!r}"
        raise ConfigError(msg)

    return candidate
