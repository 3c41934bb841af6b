"""CloudFormation template emitter.

Maps the canonical document onto CloudFormation's layout and back:

    canonical                     CloudFormation
    resources.<id>.kind           Resources.<id>.Type
    resources.<id>.properties     Resources.<id>.Properties
    deletionPolicy                DeletionPolicy
    updateReplacePolicy           UpdateReplacePolicy

Intrinsic nodes (``Ref``, ``Fn::GetAtt``) already use CloudFormation's long
form and pass through unchanged.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any, Dict, Union

import yaml

from ...exceptions import TemplateFormatError
from ..synthesizer import (
    DELETION_POLICY_KEY,
    KIND_KEY,
    PROPERTIES_KEY,
    RESOURCES_KEY,
    UPDATE_REPLACE_POLICY_KEY,
    Template,
)
from . import register_emitter
from .base import TemplateEmitter

logger = logging.getLogger(__name__)

FORMAT_VERSION = "2010-09-09"
METADATA_GENERATOR_KEY = "Stacksmith::Generator"

_ENTRY_MAPPING = (
    (KIND_KEY, "Type"),
    (PROPERTIES_KEY, "Properties"),
    (DELETION_POLICY_KEY, "DeletionPolicy"),
    (UPDATE_REPLACE_POLICY_KEY, "UpdateReplacePolicy"),
)


class CloudFormationEmitter(TemplateEmitter):
    """Emitter for CloudFormation JSON or YAML templates.

    Config:
        style: "json" (default) or "yaml"
        indent: Indentation width for JSON output (default 2)
        description: Optional template Description
    """

    format_name = "cloudformation"

    @property
    def style(self) -> str:
        return str(self.config.get("style", "json")).lower()

    @property
    def file_extension(self) -> str:  # type: ignore[override]
        return ".yaml" if self.style == "yaml" else ".json"

    def emit(self, template: Template) -> Dict[str, Any]:
        resources: Dict[str, Any] = {}
        for logical_id, entry in template.resources.items():
            cfn_entry: Dict[str, Any] = {}
            for canonical_key, cfn_key in _ENTRY_MAPPING:
                if canonical_key in entry:
                    cfn_entry[cfn_key] = entry[canonical_key]
            cfn_entry.setdefault("Properties", {})
            resources[logical_id] = cfn_entry

        document: Dict[str, Any] = {
            "AWSTemplateFormatVersion": FORMAT_VERSION,
            "Metadata": {METADATA_GENERATOR_KEY: "stacksmith"},
            "Resources": resources,
        }
        if self.config.get("description"):
            document["Description"] = self.config["description"]
        return document

    def render(self, template: Template) -> str:
        document = self.emit(template)
        if self.style == "yaml":
            return yaml.safe_dump(document, sort_keys=True, default_flow_style=False).rstrip()
        return json.dumps(document, sort_keys=True, indent=self.config.get("indent", 2))

    def parse(self, body: Union[str, Mapping]) -> Template:
        """Parse a CloudFormation template body back into a canonical Template.

        Args:
            body: Template body as returned by the provider (text or parsed)

        Raises:
            TemplateFormatError: If the body cannot be parsed
        """
        document = self._load(body)
        resources = document.get("Resources")
        if not isinstance(resources, Mapping):
            raise TemplateFormatError("CloudFormation template has no Resources section")

        canonical: Dict[str, Any] = {}
        for logical_id, entry in resources.items():
            if not isinstance(entry, Mapping) or "Type" not in entry:
                raise TemplateFormatError(
                    f"Resource '{logical_id}' has no Type",
                    context={"logical_id": logical_id},
                )
            canonical_entry: Dict[str, Any] = {PROPERTIES_KEY: {}}
            for canonical_key, cfn_key in _ENTRY_MAPPING:
                if cfn_key in entry:
                    canonical_entry[canonical_key] = entry[cfn_key]
            ignored = set(entry) - {cfn_key for _, cfn_key in _ENTRY_MAPPING}
            if ignored:
                logger.debug(
                    f"Ignoring attributes {sorted(ignored)} of resource '{logical_id}'"
                )
            canonical[logical_id] = canonical_entry

        return Template.from_document({RESOURCES_KEY: canonical})

    def _load(self, body: Union[str, Mapping]) -> Mapping:
        if isinstance(body, Mapping):
            return body
        try:
            document = json.loads(body)
        except ValueError:
            try:
                document = yaml.safe_load(body)
            except yaml.YAMLError as e:
                raise TemplateFormatError(
                    f"Template body is neither JSON nor YAML: {e}", cause=e
                ) from e
        if not isinstance(document, Mapping):
            raise TemplateFormatError("Template body must be an object")
        return document


# Auto-register this emitter
register_emitter("cloudformation", CloudFormationEmitter)
