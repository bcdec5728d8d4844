"""
Input validation and the validation error hierarchy.

Every rejection raised before a catalog or run write is a ValidationError
carrying the offending field, so callers can report it per field.
"""

import re

NAME_MAX_LENGTH = 255


class ValidationError(ValueError):
    """Raised when a command is rejected before any write."""

    def __init__(self, message: str, field_name: str | None = None):
        super().__init__(message)
        self.field_name = field_name


class NotFoundError(ValidationError):
    """A referenced entity does not exist or belongs to another project."""


class LayerTransitionError(ValidationError):
    """A mapping or pipeline stage joins datasets outside an allowed layer transition."""


class EmptyPipelineError(ValidationError):
    """A run was requested for a pipeline with no configured stage."""


class RunConflictError(ValidationError):
    """A run of the same pipeline is already in progress."""


def validate_name(name: str, field_name: str = "name") -> str:
    """
    Validate a display name (source, dataset, pipeline).

    Args:
        name: The name to validate
        field_name: Name of the field (for error messages)

    Returns:
        The name stripped of surrounding whitespace

    Raises:
        ValidationError: If the name is empty or too long

    Examples:
        >>> validate_name("  sales export ")
        'sales export'
    """
    if not name or not isinstance(name, str):
        raise ValidationError(f"{field_name} must be a non-empty string", field_name)

    name = name.strip()

    if not name:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only", field_name)

    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"{field_name} exceeds maximum length of {NAME_MAX_LENGTH} characters", field_name
        )

    return name


def validate_slug(slug: str, field_name: str = "slug") -> str:
    """
    Validate a project slug.

    Slugs are lowercase letters, digits, hyphens and underscores, starting
    with a letter or digit.

    Examples:
        >>> validate_slug("dvf-2024")
        'dvf-2024'
        >>> validate_slug("Bad Slug")  # doctest: +SKIP
        ValidationError: slug contains invalid characters
    """
    slug = validate_name(slug, field_name)

    if not re.match(r"^[a-z0-9][a-z0-9_\-]*$", slug):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "Only lowercase letters, digits, hyphens and underscores are allowed.",
            field_name,
        )

    return slug


def validate_uri(uri: str, field_name: str = "uri") -> str:
    """
    Validate a source or warehouse URI.

    Accepts ``scheme://...`` URIs and plain absolute paths.
    """
    uri = validate_name(uri, field_name)

    if "\x00" in uri:
        raise ValidationError(f"{field_name} contains null bytes", field_name)

    if not (re.match(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://", uri) or uri.startswith("/")):
        raise ValidationError(
            f"{field_name} must be a URI with a scheme (file://, s3://...) or an absolute path",
            field_name,
        )

    return uri


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = 10000) -> int:
    """
    Validate a limit parameter for queries.

    Examples:
        >>> validate_limit(100)
        100
    """
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(
            f"{field_name} must be an integer, got {type(limit).__name__}", field_name
        )

    if limit <= 0:
        raise ValidationError(f"{field_name} must be a positive integer, got {limit}", field_name)

    if limit > max_limit:
        raise ValidationError(f"{field_name} exceeds maximum of {max_limit}", field_name)

    return limit


def clamp_sample_limit(limit: int | None, default: int = 200, lower: int = 1, upper: int = 1000) -> int:
    """
    Clamp a schema-inference sample size into [lower, upper].

    Examples:
        >>> clamp_sample_limit(None)
        200
        >>> clamp_sample_limit(0)
        1
        >>> clamp_sample_limit(50000)
        1000
    """
    if limit is None:
        return default
    return min(upper, max(lower, int(limit)))
