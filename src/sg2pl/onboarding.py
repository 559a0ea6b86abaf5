"""Binding onboarding.

Onboarding registers a binding and immediately runs one reconciliation so
the prefix list is populated without waiting for the next scheduled run.
Creating or validating the prefix list itself is left to the caller.
"""

from __future__ import annotations

import asyncio
import logging

from .deadline import Deadline
from .models import Binding
from .reconciler import ReconciliationResult, Reconciler
from .registry import BindingRegistry

logger = logging.getLogger(__name__)


async def register_binding(
    registry: BindingRegistry,
    reconciler: Reconciler,
    binding: Binding,
    deadline: Deadline | None = None,
    request_id: str = "",
) -> ReconciliationResult:
    """Persist a binding and run its initial sync.

    The binding stays registered whatever the outcome of the initial sync;
    the scheduler picks it up on its next run.

    Raises:
        RegistryError: If the binding cannot be written.
    """
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, registry.put, binding.key, binding)

    logger.info(
        "Binding onboarded, running initial sync",
        extra={"binding_key": binding.key},
    )
    return await reconciler.reconcile(binding, deadline, request_id)
