"""
Collection file codec

Serializes a Collection to YAML text and back, validating the top-level
shape on the way in. Accepts the legacy list form of ``modules`` and keys it
by module id.
"""

from typing import Any, Dict, List

import yaml

from .errors import ParseError, ValidationError
from .models import Collection, CollectionMetadata, Module

FILE_SUFFIX = ".yaml"


class RecordCodec:
    """YAML encoder/decoder for collection files"""

    def __init__(self, line_width: int = 120):
        self.line_width = line_width

    def encode(self, collection: Collection) -> str:
        return yaml.safe_dump(
            collection.to_dict(),
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
            indent=2,
            width=self.line_width,
        )

    def encode_modules(self, modules: Dict[str, Module]) -> str:
        """Encode a bare module map with fresh metadata"""
        return self.encode(
            Collection(metadata=CollectionMetadata(total_modules=len(modules)), modules=modules)
        )

    def parse(self, text: str) -> Any:
        """Parse YAML text without interpreting it"""
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ParseError("Collection file is not valid YAML", details=str(e)) from e

    def decode(self, text: str) -> Collection:
        data = self.parse(text)
        errors = self.shape_errors(data)
        if errors:
            raise ValidationError("Collection file has an invalid structure", details=errors)
        return Collection(
            metadata=CollectionMetadata.from_dict(data["metadata"]),
            modules=self._modules_by_id(data["modules"]),
        )

    @staticmethod
    def shape_errors(data: Any) -> List[str]:
        """Top-level structure problems; empty when the shape is valid"""
        if data is None:
            return ["Collection file is empty"]
        if not isinstance(data, dict):
            return ["Collection must be a mapping"]

        errors = []
        if not isinstance(data.get("metadata"), dict):
            errors.append("Missing metadata mapping")
        modules = data.get("modules")
        if not isinstance(modules, (dict, list)):
            errors.append("modules must be a mapping or a list")
        elif isinstance(modules, dict):
            for key, record in modules.items():
                if not isinstance(record, dict):
                    errors.append(f"Module {key!r} must be a mapping")
        else:
            for index, record in enumerate(modules):
                if not isinstance(record, dict):
                    errors.append(f"Module #{index} must be a mapping")
                elif not (record.get("id") or record.get("hierarchical_name")):
                    errors.append(f"Module #{index} has neither id nor hierarchical_name")
        return errors

    @staticmethod
    def _modules_by_id(raw: Any) -> Dict[str, Module]:
        modules: Dict[str, Module] = {}
        if isinstance(raw, dict):
            # Name-keyed files carry their own uuid in each record
            for key, record in raw.items():
                module = Module.from_dict(record)
                if not module.id:
                    module.id = str(key)
                if module.id in modules:
                    raise ValidationError(f"Duplicate module id in collection: {module.id!r}")
                modules[module.id] = module
            return modules

        for record in raw:
            module = Module.from_dict(record)
            key = module.id or module.hierarchical_name
            if key in modules:
                raise ValidationError(f"Duplicate module key in collection: {key!r}")
            module.id = key
            modules[key] = module
        return modules
