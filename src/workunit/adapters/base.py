"""
Persistence adapter protocol, connection configuration and adapter errors.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence, Type
from urllib.parse import parse_qsl, urlparse, urlunparse

from ..errors import PersistenceError

if TYPE_CHECKING:
    from ..core.entity import Entity


class AdapterError(PersistenceError):
    """Base error for adapter-related failures."""


class AdapterConfigurationError(AdapterError):
    """Raised when configuration or required dependencies are invalid."""


class AdapterConnectionError(AdapterError):
    """Raised when establishing or using a connection fails."""


class AdapterExecutionError(AdapterError):
    """Raised when a read or write statement fails."""


class AdapterTransactionError(AdapterError):
    """Raised when begin/commit/rollback/savepoint operations fail."""


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise AdapterConfigurationError(f"Invalid boolean value for '{key}': {value!r}")


def _parse_float(value: str, *, key: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise AdapterConfigurationError(f"Invalid float value for '{key}': {value!r}") from exc


@dataclass
class ConnectionConfig:
    """
    Normalized connection configuration for adapters.
    """

    url: str
    timeout: float | None = None
    isolation_level: str | None = None
    foreign_keys: bool = True
    options: dict[str, Any] | None = None
    source: str | None = None

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "ConnectionConfig":
        """
        Build a config, reading ``timeout``/``isolation_level``/``foreign_keys``
        from the URL query string. Explicit keyword arguments win.
        """

        parsed = urlparse(url)
        query = dict(parse_qsl(parsed.query))

        timeout = _parse_float(query.pop("timeout"), key="timeout") if "timeout" in query else None
        isolation_level = query.pop("isolation_level", None)
        foreign_keys = (
            _parse_bool(query.pop("foreign_keys"), key="foreign_keys") if "foreign_keys" in query else True
        )
        options = dict(query)
        options.update(kwargs.pop("options", None) or {})

        base_url = url.partition("?")[0]
        return cls(
            url=base_url,
            timeout=kwargs.pop("timeout", timeout),
            isolation_level=kwargs.pop("isolation_level", isolation_level),
            foreign_keys=kwargs.pop("foreign_keys", foreign_keys),
            options=options or None,
            **kwargs,
        )

    @classmethod
    def from_env(cls, env_var: str, **kwargs: Any) -> "ConnectionConfig":
        """
        Build a config from an environment variable containing a database URL.
        """

        value = os.getenv(env_var)
        if not value:
            raise AdapterConfigurationError(f"Environment variable {env_var} is not set")
        return cls.from_url(value, source=env_var, **kwargs)

    def redacted_url(self) -> str:
        parsed = urlparse(self.url)
        if parsed.password:
            netloc = parsed.netloc.replace(f":{parsed.password}@", ":***@")
            return urlunparse(parsed._replace(netloc=netloc))
        return self.url

    def descriptive_label(self) -> str:
        redacted = self.redacted_url()
        if self.source:
            return f"{self.source} ({redacted})"
        return redacted


class PersistenceAdapter(Protocol):
    """
    Storage collaborator driven by the transaction coordinator.

    Entities are handled through their capability interface only
    (``table_name``, ``to_row``, ``from_row``).
    """

    def connect(self, config: ConnectionConfig) -> Any:
        """
        Establish a connection handle using the supplied configuration.
        """

    def close(self) -> None:
        """
        Close underlying resources. Implementations should be idempotent.
        """

    def begin(self) -> None:
        """
        Open a storage transaction.
        """

    def commit(self) -> None:
        """
        Commit the open storage transaction.
        """

    def rollback(self) -> None:
        """
        Abort the open storage transaction.
        """

    def savepoint(self, name: str) -> None:
        """
        Create a named savepoint inside the open transaction.
        """

    def rollback_to(self, name: str) -> None:
        """
        Discard everything written since savepoint ``name`` and drop it.
        """

    def insert(self, entity: "Entity") -> Any:
        """
        Insert the entity with version 1 and return the generated id.
        """

    def update(
        self,
        entity: "Entity",
        expected_version: int,
        fields: Sequence[str] | None = None,
    ) -> bool:
        """
        Write the entity as version ``expected_version + 1`` if storage still
        holds ``expected_version``. Returns ``False`` when the version moved.
        """

    def delete(self, entity_type: Type["Entity"], entity_id: Any) -> None:
        """
        Delete the row identified by ``entity_id``.
        """

    def current_version(self, entity_type: Type["Entity"], entity_id: Any) -> int | None:
        """
        Version currently persisted for the row, or ``None`` if it does not exist.
        """

    def load(self, entity_type: Type["Entity"], entity_id: Any) -> Mapping[str, Any] | None:
        """
        Column-keyed row for ``entity_id``, or ``None``.
        """
