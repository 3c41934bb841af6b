"""Stacksmith: validated infrastructure stacks, synthesized and deployed."""

__version__ = "0.1.0"

from .exceptions import (  # noqa: E402
    DeploymentError,
    StacksmithError,
    ValidationError,
    ValidationErrorKind,
)
from .iac import Stack, StackAssembler, Template, diff, get_att, ref, synthesize  # noqa: E402

__all__ = [
    "DeploymentError",
    "Stack",
    "StackAssembler",
    "StacksmithError",
    "Template",
    "ValidationError",
    "ValidationErrorKind",
    "__version__",
    "diff",
    "get_att",
    "ref",
    "synthesize",
]
