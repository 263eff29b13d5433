"""
Credential lookup by service name.

Sources name their credential by reference, never by value:

- ``env:VAR_NAME`` resolves from the environment.
- a bare service name resolves through the configured providers, e.g. the
  environment variable ``ORGSYNC_SECRET_<SERVICE>``.

Only references are logged or written to state files.
"""

from __future__ import annotations

import os
import re
from typing import Protocol

ENV_SECRET_PREFIX = "ORGSYNC_SECRET_"


def service_env_name(service: str) -> str:
    """``my-caldav`` -> ``ORGSYNC_SECRET_MY_CALDAV``."""
    return ENV_SECRET_PREFIX + re.sub(r"[^A-Za-z0-9]+", "_", service).strip("_").upper()


class SecretsProvider(Protocol):
    """Opaque get/put-by-service credential capability."""

    def get(self, service: str) -> str | None:
        """
        Resolve a service name or reference to its secret.

        Args:
            service: Service name (e.g. "caldav") or reference ("env:PASSWORD")

        Returns:
            The secret value, or None if not found.
        """
        ...

    def put(self, service: str, secret: str) -> None:
        ...

    def supports(self, service: str) -> bool:
        ...


class EnvSecretsProvider:
    """
    Resolve secrets from environment variables.

    ``env:VAR_NAME`` reads ``VAR_NAME``; any other service name reads
    ``ORGSYNC_SECRET_<SERVICE>``.
    """

    PREFIX = "env:"

    def supports(self, service: str) -> bool:
        return bool(service)

    def _var_name(self, service: str) -> str:
        if service.startswith(self.PREFIX):
            return service[len(self.PREFIX) :]
        return service_env_name(service)

    def get(self, service: str) -> str | None:
        return os.environ.get(self._var_name(service))

    def put(self, service: str, secret: str) -> None:
        os.environ[self._var_name(service)] = secret


class MemorySecretsProvider:
    """In-process store, for tests and for secrets entered interactively."""

    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets = dict(secrets or {})

    def supports(self, service: str) -> bool:
        return not service.startswith(EnvSecretsProvider.PREFIX)

    def get(self, service: str) -> str | None:
        return self._secrets.get(service)

    def put(self, service: str, secret: str) -> None:
        self._secrets[service] = secret


class CompositeSecretsProvider:
    """
    Combine multiple providers.

    ``get`` tries each provider in order until one returns a value; ``put``
    writes to the first provider that supports the service.
    """

    def __init__(self, providers: list[SecretsProvider] | None = None):
        self.providers = providers or [EnvSecretsProvider()]

    def supports(self, service: str) -> bool:
        return any(p.supports(service) for p in self.providers)

    def get(self, service: str) -> str | None:
        for provider in self.providers:
            if provider.supports(service):
                value = provider.get(service)
                if value is not None:
                    return value
        return None

    def put(self, service: str, secret: str) -> None:
        for provider in self.providers:
            if provider.supports(service):
                provider.put(service, secret)
                return
        raise KeyError(f"No secrets provider accepts {service!r}")
