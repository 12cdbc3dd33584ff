"""
Natural-language descriptions of parsed entities.

Descriptions, not raw source, are what gets embedded: they state what a
type or method is for (inferred from framework annotations, naming
conventions and package layout), what it depends on and where it lives.
"""

import re

import structlog

from .entities import MethodEntity, TypeEntity

log = structlog.get_logger()

MAX_KEY_METHODS = 10
MAX_DEPENDENCIES = 10
MAX_CALLS = 10

CLASS_ANNOTATION_PURPOSES = (
    (("@RestController", "@Controller"), "Handles HTTP requests for REST API endpoints"),
    (("@Service",), "Business logic service component"),
    (("@Repository",), "Data access repository for database operations"),
    (("@Configuration",), "Spring configuration class for bean definitions"),
    (("@Component",), "Spring-managed component"),
    (("@Entity",), "JPA entity representing database table"),
)

CLASS_NAME_PURPOSES = (
    (("controller",), "Handles HTTP requests"),
    (("service", "serviceimpl"), "Provides business logic"),
    (("repository", "dao"), "Manages data persistence"),
    (("config", "configuration"), "Provides application configuration"),
    (("dto", "request", "response"), "Data transfer object"),
    (("entity", "model"), "Domain model or data entity"),
    (("exception",), "Custom exception class"),
    (("util", "utils", "helper"), "Utility or helper class"),
    (("tool",), "Tool for agent-based operations"),
)

PACKAGE_PURPOSES = (
    ((".api", ".controller"), "API endpoint handler"),
    ((".service",), "Business logic service"),
    ((".repository", ".dao"), "Data access component"),
    ((".model", ".entity"), "Data model or entity"),
    ((".config",), "Configuration component"),
)

PACKAGE_DOMAINS = (
    ((".api", ".controller"), "API Layer"),
    ((".service",), "Business Logic Layer"),
    ((".repository", ".dao"), "Data Access Layer"),
    ((".model", ".entity"), "Domain Model"),
    ((".config",), "Configuration"),
    ((".util",), "Utilities"),
    ((".agent",), "Agent System"),
    ((".knowledge",), "Knowledge Management"),
    ((".search",), "Search"),
)

METHOD_ANNOTATION_PURPOSES = (
    ("@GetMapping", "HTTP GET endpoint"),
    ("@PostMapping", "HTTP POST endpoint"),
    ("@PutMapping", "HTTP PUT endpoint"),
    ("@DeleteMapping", "HTTP DELETE endpoint"),
    ("@RequestMapping", "HTTP request handler"),
)

# (prefixes, verb); the remainder of the name becomes the object
METHOD_PREFIX_VERBS = (
    (("get",), "Retrieves"),
    (("find",), "Finds"),
    (("search",), "Searches for"),
    (("create", "add"), "Creates"),
    (("update",), "Updates"),
    (("delete", "remove"), "Deletes"),
    (("save",), "Saves"),
)

METHOD_PREFIX_FIXED = (
    (("is", "has", "can"), "Checks condition"),
    (("execute", "process", "run"), "Executes operation"),
)

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def split_camel_case(name: str) -> str:
    """Split a camelCase identifier into space-separated words."""
    return _CAMEL_BOUNDARY.sub(r"\1 \2", name)


def _entity_words(suffix: str) -> str:
    if not suffix:
        return "data"
    return split_camel_case(suffix).lower()


def infer_domain(package_name: str) -> str:
    """Architectural layer suggested by a package name."""
    for segments, domain in PACKAGE_DOMAINS:
        if any(segment in package_name for segment in segments):
            return domain
    return "Application"


def infer_class_purpose(type_entity: TypeEntity) -> str:
    """Purpose of a type from annotations, then name suffix, then package."""
    for markers, purpose in CLASS_ANNOTATION_PURPOSES:
        if any(marker in type_entity.annotations for marker in markers):
            return purpose

    lowered = type_entity.name.lower()
    for suffixes, purpose in CLASS_NAME_PURPOSES:
        if lowered.endswith(suffixes):
            return purpose

    for segments, purpose in PACKAGE_PURPOSES:
        if any(segment in type_entity.package_name for segment in segments):
            return purpose

    return f"Java {type_entity.kind.value.lower()}"


def infer_method_purpose(method: MethodEntity) -> str:
    """Purpose of a method from mapping annotations, then its name."""
    for marker, purpose in METHOD_ANNOTATION_PURPOSES:
        if marker in method.annotations:
            return purpose

    lowered = method.name.lower()
    for prefixes, verb in METHOD_PREFIX_VERBS:
        for prefix in prefixes:
            if lowered.startswith(prefix):
                return f"{verb} {_entity_words(method.name[len(prefix):])}"

    for prefixes, purpose in METHOD_PREFIX_FIXED:
        if lowered.startswith(prefixes):
            return purpose

    if lowered.startswith("build"):
        return f"Builds {_entity_words(method.name[len('build'):])}"

    return f"Performs {split_camel_case(method.name)}"


class DescriptionGenerator:
    """Builds embedding-oriented text descriptions for types and methods."""

    def describe_type(self, type_entity: TypeEntity) -> str:
        """Multi-line description of a type and its role."""
        lines = [
            f"Class: {type_entity.name}",
            f"Purpose: {infer_class_purpose(type_entity)}",
        ]

        if type_entity.package_name:
            lines.append(f"Package: {type_entity.package_name}")
            lines.append(f"Domain: {infer_domain(type_entity.package_name)}")

        lines.append(f"Type: {type_entity.kind.value}")

        if type_entity.annotations:
            lines.append(f"Annotations: {', '.join(type_entity.annotations)}")
        if type_entity.superclass:
            lines.append(f"Extends: {type_entity.superclass}")
        if type_entity.interfaces:
            lines.append(f"Implements: {', '.join(type_entity.interfaces)}")

        if type_entity.methods:
            lines.append("Key Methods:")
            for method in type_entity.methods[:MAX_KEY_METHODS]:
                label = method.name
                if method.annotations:
                    label += f" ({', '.join(method.annotations)})"
                lines.append(f"  - {label}: {infer_method_purpose(method)}")

        field_types = list(
            dict.fromkeys(f.type for f in type_entity.fields if not f.is_enum_constant)
        )[:MAX_DEPENDENCIES]
        if field_types:
            lines.append(f"Dependencies: {', '.join(field_types)}")

        if type_entity.file_path:
            lines.append(f"Location: {type_entity.file_path}")

        return "\n".join(lines) + "\n"

    def describe_method(self, method: MethodEntity, owner: TypeEntity) -> str:
        """Multi-line description of a method in the context of its owning type."""
        lines = [
            f"Method: {method.name}",
            f"Purpose: {infer_method_purpose(method)}",
            f"Class: {owner.fully_qualified_name}",
        ]

        if method.annotations:
            lines.append(f"Annotations: {', '.join(method.annotations)}")

        if method.parameters:
            lines.append("Parameters:")
            lines.extend(f"  - {p.type} {p.name}" for p in method.parameters)

        if method.return_type:
            lines.append(f"Returns: {method.return_type}")

        if method.calls:
            lines.append(f"Calls: {', '.join(method.calls[:MAX_CALLS])}")

        lines.append(f"Lines: {method.start_line}-{method.end_line}")
        return "\n".join(lines) + "\n"

    def describe_all(self, types: list[TypeEntity]) -> int:
        """Fill in descriptions for every type and method in place.

        Returns:
            Number of descriptions generated
        """
        count = 0
        for type_entity in types:
            type_entity.description = self.describe_type(type_entity)
            count += 1
            for method in type_entity.methods:
                method.description = self.describe_method(method, type_entity)
                count += 1
        log.debug("description.generated", count=count)
        return count
