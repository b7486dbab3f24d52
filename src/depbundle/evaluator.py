"""
Directive evaluator.

Turns the forms read from a manifest into a ``Bundle``. All working state
lives in an ``_EvaluationState`` created per call; the dependency scope is
passed down explicitly, so a ``development`` block affects only the forms
nested inside it.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from .bundle import Bundle, PackageIdentity
from .dependency import Dependency
from .error_handling import log_evaluation_error
from .exceptions import EvaluationError, MalformedDirective, UnknownDirective
from .reader import ParsedForm, Symbol, is_symbol_name, read_manifest
from .registry_clients import RegistryClient
from .sources import SourceRegistrySpec, resolve_source
from .structured_logging import log_bundle_evaluated


class Directive(Enum):
    SOURCE = "source"
    PACKAGE = "package"
    PACKAGE_FILE = "package-file"
    DEPENDS_ON = "depends-on"
    DEVELOPMENT = "development"


class Scope(Enum):
    RUNTIME = "runtime"
    DEVELOPMENT = "development"


@dataclass
class _EvaluationState:
    registry_client: RegistryClient
    project_root: Path
    identity: Optional[PackageIdentity] = None
    runtime: List[Dependency] = field(default_factory=list)
    development: List[Dependency] = field(default_factory=list)
    sources: List[SourceRegistrySpec] = field(default_factory=list)

    def dependencies_for(self, scope: Scope) -> List[Dependency]:
        return self.runtime if scope is Scope.RUNTIME else self.development

    def to_bundle(self) -> Bundle:
        identity = self.identity
        return Bundle(
            name=identity.name if identity else None,
            version=identity.version if identity else None,
            description=identity.description if identity else None,
            runtime_dependencies=tuple(self.runtime),
            development_dependencies=tuple(self.development),
            sources=tuple(self.sources),
            project_root=self.project_root,
        )


def _directive_of(form: ParsedForm) -> Directive:
    head = form.directive
    if form.compound and isinstance(head, Symbol):
        try:
            return Directive(str(head))
        except ValueError:
            pass
    raise UnknownDirective(head)


def _unquote(value: Any) -> Any:
    """``'melpa`` reads as ``(quote melpa)``; use the quoted datum."""
    if (
        isinstance(value, list)
        and len(value) == 2
        and isinstance(value[0], Symbol)
        and value[0] == "quote"
    ):
        return value[1]
    return value


def _text(directive: Directive, value: Any, what: str) -> str:
    value = _unquote(value)
    if isinstance(value, bool):
        raise MalformedDirective(directive.value, f"{what} must be a string or symbol")
    if isinstance(value, (str, int, float)):
        return str(value)
    raise MalformedDirective(directive.value, f"{what} must be a string or symbol")


def _dependency_name(directive: Directive, name: str) -> str:
    if not is_symbol_name(name):
        raise MalformedDirective(
            directive.value, f"dependency name {name!r} is not a valid symbol"
        )
    return name


def _check_arity(form: ParsedForm, directive: Directive, minimum: int, maximum: int) -> None:
    count = len(form.arguments)
    if not minimum <= count <= maximum:
        expected = str(minimum) if minimum == maximum else f"{minimum} to {maximum}"
        raise MalformedDirective(
            directive.value, f"expected {expected} arguments, got {count}"
        )


class DirectiveEvaluator:
    """Evaluates a list of forms against a fresh working state."""

    def __init__(self, registry_client: RegistryClient, project_root: Path):
        self._state = _EvaluationState(registry_client, project_root)
        self._handlers: Dict[Directive, Callable[[ParsedForm, Scope], None]] = {
            Directive.SOURCE: self._eval_source,
            Directive.PACKAGE: self._eval_package,
            Directive.PACKAGE_FILE: self._eval_package_file,
            Directive.DEPENDS_ON: self._eval_depends_on,
            Directive.DEVELOPMENT: self._eval_development,
        }

    def run(self, forms: Iterable[ParsedForm]) -> Bundle:
        self.evaluate_forms(forms, Scope.RUNTIME)
        return self._state.to_bundle()

    def evaluate_forms(self, forms: Iterable[ParsedForm], scope: Scope) -> None:
        for form in forms:
            directive = _directive_of(form)
            self._handlers[directive](form, scope)

    def _eval_source(self, form: ParsedForm, scope: Scope) -> None:
        _check_arity(form, Directive.SOURCE, 1, 2)
        alias = _text(Directive.SOURCE, form.arguments[0], "archive name")
        url = (
            _text(Directive.SOURCE, form.arguments[1], "archive url")
            if len(form.arguments) == 2
            else None
        )
        source = resolve_source(alias, url)
        self._state.registry_client.add_source(source)
        self._state.sources.append(source)

    def _eval_package(self, form: ParsedForm, scope: Scope) -> None:
        _check_arity(form, Directive.PACKAGE, 3, 3)
        name, version, description = (
            _text(Directive.PACKAGE, value, what)
            for value, what in zip(form.arguments, ("name", "version", "description"))
        )
        self._state.identity = PackageIdentity(name, version, description)

    def _eval_package_file(self, form: ParsedForm, scope: Scope) -> None:
        _check_arity(form, Directive.PACKAGE_FILE, 1, 1)
        filename = _text(Directive.PACKAGE_FILE, form.arguments[0], "filename")
        metadata = self._state.registry_client.package_from_file(
            self._state.project_root / filename
        )
        self._state.identity = PackageIdentity(
            metadata.name, metadata.version, metadata.description
        )
        # Requirements of the package file are always runtime dependencies
        self._state.runtime.extend(
            Dependency(_dependency_name(Directive.PACKAGE_FILE, name), version)
            for name, version in metadata.requirements
        )

    def _eval_depends_on(self, form: ParsedForm, scope: Scope) -> None:
        _check_arity(form, Directive.DEPENDS_ON, 1, 2)
        name = _dependency_name(
            Directive.DEPENDS_ON,
            _text(Directive.DEPENDS_ON, form.arguments[0], "dependency name"),
        )
        version = (
            _text(Directive.DEPENDS_ON, form.arguments[1], "dependency version")
            if len(form.arguments) == 2
            else None
        )
        self._state.dependencies_for(scope).append(Dependency(name, version))

    def _eval_development(self, form: ParsedForm, scope: Scope) -> None:
        nested = [ParsedForm.from_expression(argument) for argument in form.arguments]
        self.evaluate_forms(nested, Scope.DEVELOPMENT)


def evaluate(
    forms: Sequence[ParsedForm],
    registry_client: RegistryClient,
    project_root: Optional[Union[str, Path]] = None,
) -> Bundle:
    """
    Evaluate manifest forms into a Bundle.

    Args:
        forms: Forms as returned by the reader, in source order
        registry_client: Receives ``source`` registrations and parses package files
        project_root: Directory ``package-file`` names are relative to

    Raises:
        UnknownDirective: If a form's head is not a known directive
        UnknownRegistryAlias: If a ``source`` alias cannot be resolved
        MalformedDirective: If a directive has the wrong arguments
    """
    root = Path(project_root) if project_root is not None else Path.cwd()
    try:
        bundle = DirectiveEvaluator(registry_client, root).run(forms)
    except EvaluationError as e:
        tag = getattr(e, "tag", None)
        log_evaluation_error(
            str(e),
            "evaluator",
            "evaluate",
            directive=str(tag) if tag is not None else None,
            exception=e,
        )
        raise

    log_bundle_evaluated(
        bundle.name, len(bundle.runtime_dependencies), len(bundle.development_dependencies)
    )
    return bundle


def load_bundle(path: Union[str, Path], registry_client: RegistryClient) -> Bundle:
    """Read and evaluate the manifest at ``path``."""
    manifest_path = Path(path)
    forms = read_manifest(manifest_path)
    return evaluate(forms, registry_client, manifest_path.parent)
