"""Local deployment packages uploaded to S3 before a stack is submitted.

Asset keys are derived from the file content, so synthesizing the same
archive twice yields the same template and a changed archive shows up in the
diff as a new ``S3Key``.
"""

import hashlib
import os
from dataclasses import dataclass
from typing import Union

from ..exceptions import ValidationError, ValidationErrorKind

CHUNK_SIZE = 1024 * 1024
ZIP_SUFFIX = ".zip"


@dataclass(frozen=True)
class Asset:
    """A local file published to ``s3://bucket/key`` ahead of deployment."""

    bucket: str
    key: str
    path: str

    def __str__(self) -> str:
        return f"{self.path} -> s3://{self.bucket}/{self.key}"


def file_digest(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def zip_asset(bucket: str, path: Union[str, "os.PathLike[str]"], field: str = "Code") -> Asset:
    """Describe a local zip archive as an upload to ``bucket``.

    Args:
        bucket: Name of an existing bucket the archive is uploaded to
        path: Local path of the archive
        field: Property name used in violations

    Returns:
        Asset keyed ``<sha256>.zip``

    Raises:
        ValidationError: If the bucket is not a name or the file is not a
            readable zip archive
    """
    if not isinstance(bucket, str) or not bucket:
        raise ValidationError(
            ValidationErrorKind.PATTERN_MISMATCH,
            f"{field}.S3Bucket for a local archive must be an existing bucket name",
            field=f"{field}.S3Bucket",
            value=repr(bucket),
        )
    path = os.fspath(path)
    if not path.endswith(ZIP_SUFFIX):
        raise ValidationError(
            ValidationErrorKind.PATTERN_MISMATCH,
            f"{path} is not a {ZIP_SUFFIX} archive",
            field=field,
            value=path,
        )
    try:
        digest = file_digest(path)
    except OSError as e:
        raise ValidationError(
            ValidationErrorKind.REQUIRED_FIELD_MISSING,
            f"Cannot read deployment package {path}: {e.strerror or e}",
            field=field,
            value=path,
            cause=e,
        ) from e
    return Asset(bucket=bucket, key=f"{digest}{ZIP_SUFFIX}", path=path)
