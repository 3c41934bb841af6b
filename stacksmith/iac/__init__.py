"""Resource model, stack assembly, synthesis and diffing."""

from .assets import Asset, zip_asset
from .constraints import PropertySpec, ViolationCollector
from .diff import ChangeType, DiffResult, ResourceChange, diff
from .references import (
    ExternalReference,
    Reference,
    ReferenceKind,
    external,
    get_att,
    ref,
)
from .resource import DeletionPolicy, Resource
from .stack import Stack, StackAssembler
from .synthesizer import Template, synthesize
from .verification import (
    CloudControlVerifier,
    IdentityVerifier,
    VerificationResult,
    VerificationStatus,
)

__all__ = [
    "Asset",
    "ChangeType",
    "CloudControlVerifier",
    "DeletionPolicy",
    "DiffResult",
    "ExternalReference",
    "IdentityVerifier",
    "PropertySpec",
    "Reference",
    "ReferenceKind",
    "Resource",
    "ResourceChange",
    "Stack",
    "StackAssembler",
    "Template",
    "VerificationResult",
    "VerificationStatus",
    "ViolationCollector",
    "diff",
    "external",
    "get_att",
    "ref",
    "synthesize",
    "zip_asset",
]
