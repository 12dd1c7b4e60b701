"""
Fieldproof error taxonomy.

Malformed input aborts an operation with no partial output. Integrity
failures found while verifying a pack are recorded per report instead of
raised, so only structural problems surface as exceptions there.
"""


class FieldproofError(Exception):
    """Base class for all fieldproof errors."""


class MalformedInputError(FieldproofError, ValueError):
    """Input is missing required fields or has an unusable structure."""


class IdentityError(MalformedInputError):
    """Identity bundle is missing, incomplete, or inconsistent."""


class PackBuildError(MalformedInputError):
    """A pack could not be built; no archive was produced."""


class EmptyPackError(PackBuildError):
    """No reports were supplied to the pack builder."""


class MissingPhotoError(PackBuildError):
    """The photo source had no bytes for a referenced report."""

    def __init__(self, report_id: str):
        super().__init__(f"Missing image data for report {report_id}")
        self.report_id = report_id


class ImageHashMismatchError(PackBuildError):
    """Photo bytes no longer hash to the value the report was signed over."""

    def __init__(self, report_id: str, expected: str, computed: str):
        super().__init__(f"Image hash mismatch for report {report_id}")
        self.report_id = report_id
        self.expected = expected
        self.computed = computed


class PackFormatError(MalformedInputError):
    """Archive bytes are not a readable pack."""


class IntegrityError(FieldproofError):
    """Stored content does not hash to its content identifier."""


class ResourceUnavailableError(FieldproofError, LookupError):
    """A blob, image or record could not be fetched."""


class SignatureSelfCheckError(FieldproofError):
    """A freshly produced signature failed to verify with its own public key."""
