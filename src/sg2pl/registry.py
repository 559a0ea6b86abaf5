"""Binding registry clients.

Bindings are persisted outside the controller. Two backends are provided:

- SsmBindingRegistry: one JSON String parameter per binding under a
  Parameter Store path (the production registry)
- FileBindingRegistry: a directory of YAML documents (local runs and tests)

Both stream bindings page by page through ``list_all()``. An entry that fails
validation is logged and skipped so that one bad parameter cannot stop the
other bindings from syncing.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Protocol

import yaml
from botocore.exceptions import BotoCoreError, ClientError

from .aws import AwsClients
from .errors import error_code, translate_error
from .models import Binding, BindingValidationError

logger = logging.getLogger(__name__)

# Parameter Store returns at most 10 parameters per GetParametersByPath page
SSM_PAGE_SIZE = 10

# Reject absurdly large registry documents
MAX_BINDING_FILE_SIZE_BYTES = 1024 * 1024

BINDING_FILE_SUFFIXES = (".yaml", ".yml")


class RegistryError(Exception):
    """Raised when the registry cannot be read or written."""

    pass


class BindingNotFoundError(RegistryError):
    """Raised when a binding key is not registered."""

    pass


class BindingRegistry(Protocol):
    """Persistence for onboarded bindings."""

    def get(self, key: str) -> Binding: ...

    def list_all(self) -> Iterator[Binding]: ...

    def put(self, key: str, binding: Binding) -> None: ...


class SsmBindingRegistry:
    """Bindings stored as JSON parameters under an SSM path."""

    def __init__(self, clients: AwsClients, path: str, region: str) -> None:
        """Initialize the registry.

        Args:
            clients: AWS client factory.
            path: Parameter path, e.g. ``/AutoSG2PL/SGs``.
            region: Region holding the parameters.
        """
        self._clients = clients
        self._path = path.rstrip("/")
        self._region = region

    @property
    def path(self) -> str:
        return self._path

    def parameter_name(self, key: str) -> str:
        return f"{self._path}/{key.strip('/')}"

    def get(self, key: str) -> Binding:
        name = self.parameter_name(key)
        try:
            response = self._clients.ssm(self._region).get_parameter(Name=name)
        except ClientError as e:
            if error_code(e) == "ParameterNotFound":
                raise BindingNotFoundError(f"Binding not registered: {key}") from e
            raise RegistryError(f"Failed to read {name}: {translate_error(e)}") from e
        except BotoCoreError as e:
            raise RegistryError(f"Failed to read {name}: {e}") from e

        binding = self._decode(response["Parameter"])
        if binding is None:
            raise RegistryError(f"Registry entry {name} is not a valid binding")
        return binding

    def list_all(self) -> Iterator[Binding]:
        """Yield every registered binding, following pagination to the end.

        Raises:
            RegistryError: If a page cannot be fetched.
        """
        paginator = self._clients.ssm(self._region).get_paginator("get_parameters_by_path")
        pages = paginator.paginate(
            Path=self._path,
            Recursive=True,
            PaginationConfig={"PageSize": SSM_PAGE_SIZE},
        )
        page_count = 0
        try:
            for page in pages:
                page_count += 1
                for parameter in page.get("Parameters", []):
                    binding = self._decode(parameter)
                    if binding is not None:
                        yield binding
        except (ClientError, BotoCoreError) as e:
            raise RegistryError(
                f"Failed to list bindings under {self._path} (page {page_count + 1}): "
                f"{translate_error(e, 'GetParametersByPath')}"
            ) from e

    def put(self, key: str, binding: Binding) -> None:
        name = self.parameter_name(key)
        try:
            self._clients.ssm(self._region).put_parameter(
                Name=name,
                Value=json.dumps(binding.to_registry_dict(), sort_keys=True),
                Type="String",
                Overwrite=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise RegistryError(f"Failed to write {name}: {translate_error(e)}") from e
        logger.info("Registered binding", extra={"binding_key": key, "parameter": name})

    def _decode(self, parameter: dict[str, Any]) -> Binding | None:
        name = parameter.get("Name", "")
        try:
            data = json.loads(parameter.get("Value", ""))
            return Binding.parse(data, source=f"registry entry {name}")
        except (json.JSONDecodeError, BindingValidationError) as e:
            logger.error(
                "Skipping invalid registry entry",
                extra={"parameter": name, "error": str(e)},
            )
            return None


class FileBindingRegistry:
    """Bindings stored as YAML documents in a directory.

    A document holds either one binding mapping or ``bindings:`` with a list
    of them. Each file counts as one page.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def get(self, key: str) -> Binding:
        for binding in self.list_all():
            if binding.key == key:
                return binding
        raise BindingNotFoundError(f"Binding not registered: {key}")

    def list_all(self) -> Iterator[Binding]:
        if not self._directory.is_dir():
            raise RegistryError(f"Bindings directory does not exist: {self._directory}")

        for path in sorted(self._directory.iterdir()):
            if path.suffix not in BINDING_FILE_SUFFIXES or not path.is_file():
                continue
            try:
                documents = self._load(path)
            except RegistryError as e:
                logger.error("Skipping unreadable bindings file", extra={"error": str(e)})
                continue
            for index, data in enumerate(documents):
                try:
                    yield Binding.parse(data, source=f"{path.name}[{index}]")
                except BindingValidationError as e:
                    logger.error(
                        "Skipping invalid binding",
                        extra={"file": str(path), "error": str(e)},
                    )

    def put(self, key: str, binding: Binding) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._directory / f"{key.strip('/').replace('/', '_')}.yaml"
        try:
            path.write_text(
                yaml.safe_dump(binding.to_registry_dict(), sort_keys=True),
                encoding="utf-8",
            )
        except OSError as e:
            raise RegistryError(f"Failed to write {path}: {e}") from e
        logger.info("Registered binding", extra={"binding_key": key, "file": str(path)})

    def _load(self, path: Path) -> list[Any]:
        try:
            if path.stat().st_size > MAX_BINDING_FILE_SIZE_BYTES:
                raise RegistryError(
                    f"Bindings file exceeds maximum size of "
                    f"{MAX_BINDING_FILE_SIZE_BYTES} bytes: {path}"
                )
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise RegistryError(f"Failed to read {path}: {e}") from e

        try:
            raw = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise RegistryError(f"Invalid YAML in {path}: {e}") from e

        if raw is None:
            return []
        if isinstance(raw, dict) and "bindings" in raw:
            raw = raw["bindings"]
            if not isinstance(raw, list):
                raise RegistryError(f"'bindings' must be a list: {path}")
            return raw
        if isinstance(raw, list):
            return raw
        return [raw]
