"""
Registry alias table.

Maps the short archive names accepted by ``(source NAME)`` to their URLs.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .cli_config import get_config
from .exceptions import UnknownRegistryAlias

SOURCE_MAPPING: Mapping[str, str] = {
    "gnu": "http://elpa.gnu.org/packages/",
    "marmalade": "http://marmalade-repo.org/packages/",
    "melpa": "http://melpa.milkbox.net/packages/",
    "tromey": "http://tromey.com/elpa/",
    "org": "http://orgmode.org/elpa/",
    "localhost": "http://127.0.0.1:9191/packages/",
}


@dataclass(frozen=True)
class SourceRegistrySpec:
    """A named package archive."""

    alias: str
    url: str


def get_source_mapping() -> Dict[str, str]:
    """Built-in aliases plus any configured ones; built-ins win on conflict."""
    mapping = dict(get_config().sources.aliases)
    mapping.update(SOURCE_MAPPING)
    return mapping


def resolve_source(alias: str, url: Optional[str] = None) -> SourceRegistrySpec:
    """
    Build the registry spec for a ``source`` directive.

    Args:
        alias: Archive name
        url: Explicit archive URL; when omitted the alias table is consulted

    Raises:
        UnknownRegistryAlias: If no URL is given and the alias is not known
    """
    if url is not None:
        return SourceRegistrySpec(alias=alias, url=url)

    mapping = get_source_mapping()
    if alias not in mapping:
        raise UnknownRegistryAlias(alias)
    return SourceRegistrySpec(alias=alias, url=mapping[alias])
