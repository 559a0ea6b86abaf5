"""AWS Lambda entry points.

- batch_sync_handler: reconcile one binding. The event is either a binding
  mapping or ``{"bindingKey": "<sgRegion>/<sgId>/<plRegion>/<plId>"}``.
- bulk_batch_initiator_handler: reconcile every registered binding.
- onboard_handler: register a binding and run its initial sync.

Components are built on the first invocation and reused while the execution
environment stays warm.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .config import Config
from .deadline import Deadline
from .main import Components, build_components, setup_logging
from .models import Binding, BindingValidationError
from .onboarding import register_binding

logger = logging.getLogger(__name__)

BINDING_KEY_FIELD = "bindingKey"

_components: Components | None = None


def get_components() -> Components:
    """Build components from the environment once per execution environment.

    Raises:
        ConfigurationError: If the environment is misconfigured.
    """
    global _components
    if _components is None:
        config = Config.from_env()
        setup_logging(config.log_level)
        _components = build_components(config)
    return _components


def reset_components() -> None:
    """Drop cached components so the next invocation rebuilds them."""
    global _components
    _components = None


def _invocation(context: Any) -> tuple[Components, Deadline | None, str]:
    components = get_components()
    components.reconciler.begin_invocation()
    deadline = Deadline.from_lambda_context(context, components.config.deadline_margin_seconds)
    request_id = getattr(context, "aws_request_id", "") or ""
    return components, deadline, request_id


def _binding_from_event(event: Any, components: Components) -> Binding:
    if not isinstance(event, dict):
        raise BindingValidationError("Event must be a JSON object")
    if BINDING_KEY_FIELD in event:
        return components.registry.get(str(event[BINDING_KEY_FIELD]))
    return Binding.parse(event, source="event")


def batch_sync_handler(event: Any, context: Any) -> dict[str, Any]:
    """Reconcile a single binding.

    Raises:
        BindingValidationError: If the event is not a valid binding.
        BindingNotFoundError: If the referenced binding key is not registered.
    """
    components, deadline, request_id = _invocation(context)
    binding = _binding_from_event(event, components)
    logger.info("Batch sync invoked", extra={"binding_key": binding.key})
    result = asyncio.run(components.reconciler.reconcile(binding, deadline, request_id))
    return result.to_dict()


def bulk_batch_initiator_handler(event: Any, context: Any) -> dict[str, Any]:
    """Reconcile every registered binding.

    Raises:
        RegistryError: If the registry cannot be listed. Nothing was modified.
    """
    components, deadline, request_id = _invocation(context)
    logger.info("Bulk batch initiator invoked")
    aggregate = asyncio.run(components.scheduler().run_all(deadline, request_id))
    return aggregate.to_dict()


def onboard_handler(event: Any, context: Any) -> dict[str, Any]:
    """Register the binding in the event and run its initial sync.

    Raises:
        BindingValidationError: If the event is not a valid binding.
        RegistryError: If the binding cannot be registered.
    """
    components, deadline, request_id = _invocation(context)
    if not isinstance(event, dict):
        raise BindingValidationError("Event must be a JSON object")
    binding = Binding.parse(event, source="onboarding request")
    result = asyncio.run(
        register_binding(
            components.registry, components.reconciler, binding, deadline, request_id
        )
    )
    return {"registered": True, **result.to_dict()}
