"""Container image reference parsing and version compatibility."""

import re
from collections import namedtuple

from . import crd

# Docker distribution reference grammar, without normalization
_ALPHA_NUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_NAME_COMPONENT = rf"{_ALPHA_NUMERIC}(?:{_SEPARATOR}{_ALPHA_NUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?"
_TAG = r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"
_NAME = rf"(?:{_DOMAIN}/)?{_NAME_COMPONENT}(?:/{_NAME_COMPONENT})*"

_REFERENCE_PATTERN = re.compile(rf"({_NAME})(?::({_TAG}))?(?:@({_DIGEST}))?")

_NAME_TOTAL_LENGTH_MAX = 255

# Same leniency as go-version: optional "v", any number of numeric segments
_VERSION_PATTERN = re.compile(
    r"v?(?P<segments>[0-9]+(?:\.[0-9]+)*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z\-~]+(?:\.[0-9A-Za-z\-~]+)*))?"
    r"(?:\+(?P<metadata>[0-9A-Za-z\-~]+(?:\.[0-9A-Za-z\-~]+)*))?"
)

IMAGE_SUPPORTED = "supported"
IMAGE_CUSTOM_VERSION = "custom-version"
IMAGE_CUSTOM_NAME = "custom-name"


class InvalidReferenceError(ValueError):
    """Raised when an image reference does not follow the reference grammar."""


class ImageReference(namedtuple("ImageReference", ["name", "tag", "digest"])):
    """A parsed image reference. tag and digest may be empty."""

    __slots__ = ()

    def __str__(self):
        ref = self.name
        if self.tag:
            ref += f":{self.tag}"
        if self.digest:
            ref += f"@{self.digest}"
        return ref


class Version(namedtuple("Version", ["segments", "prerelease", "metadata"])):
    """A parsed version, segments padded to at least three numbers."""

    __slots__ = ()

    def __str__(self):
        text = ".".join(str(s) for s in self.segments)
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.metadata:
            text += f"+{self.metadata}"
        return text


def parse_reference(ref):
    """Parse an image reference into name, tag and digest."""
    if not ref:
        raise InvalidReferenceError("repository name must have at least one component")
    match = _REFERENCE_PATTERN.fullmatch(ref)
    if match is None:
        if _REFERENCE_PATTERN.fullmatch(ref.lower()):
            raise InvalidReferenceError("repository name must be lowercase")
        raise InvalidReferenceError("invalid reference format")
    name, tag, digest = match.groups()
    if len(name) > _NAME_TOTAL_LENGTH_MAX:
        raise InvalidReferenceError(
            f"repository name must not be more than {_NAME_TOTAL_LENGTH_MAX} characters"
        )
    return ImageReference(name=name, tag=tag or "", digest=digest or "")


def _pad(segments, size=3):
    segments = tuple(segments)
    return segments + (0,) * max(0, size - len(segments))


def parse_version(text):
    """Parse a version string, returning None when it is not a version."""
    match = _VERSION_PATTERN.fullmatch(text or "")
    if match is None:
        return None
    segments = _pad([int(s) for s in match.group("segments").split(".")])
    return Version(
        segments=segments,
        prerelease=match.group("prerelease") or "",
        metadata=match.group("metadata") or "",
    )


def version_supported(version):
    """Check a version against the supported core version range.

    Prerelease versions never satisfy the range.
    """
    if version.prerelease:
        return False
    lower = _pad(crd.CONTAINER_IMAGE_MIN_VERSION)
    upper = _pad(crd.CONTAINER_IMAGE_MAX_VERSION)
    return lower <= version.segments < upper


class UnsupportedVersionError(ValueError):
    """Raised when the core image version is outside the supported range."""

    def __init__(self, ref, version):
        super().__init__(f'Unsupported image version "{ref}"')
        self.ref = ref
        self.version = version


def classify_image(image):
    """Classify an image reference.

    Returns a (reference, kind) pair where kind is one of IMAGE_SUPPORTED,
    IMAGE_CUSTOM_VERSION or IMAGE_CUSTOM_NAME.

    Raises:
        InvalidReferenceError: the reference cannot be parsed.
        UnsupportedVersionError: the canonical image with a version out of range.
    """
    ref = parse_reference(image)
    if ref.name != crd.CONTAINER_IMAGE_NAME:
        return ref, IMAGE_CUSTOM_NAME
    version = parse_version(ref.tag)
    if version is None:
        return ref, IMAGE_CUSTOM_VERSION
    if not version_supported(version):
        raise UnsupportedVersionError(ref, version)
    return ref, IMAGE_SUPPORTED
