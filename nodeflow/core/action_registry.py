"""Action Registry: the dispatcher behind action nodes."""

import asyncio
import inspect
import threading
from typing import Any, Callable, Dict, Optional

from .exceptions import ActionDispatchError, ActionRegistryError
from .logging import get_logger

logger = get_logger(__name__)


class ActionRegistry:
    """Registry for the action handlers that action nodes dispatch to.

    A handler is called as ``handler(input, **parameters)`` and may be a plain
    function or a coroutine function.
    """

    def __init__(self):
        self._handlers: Dict[str, Callable] = {}
        self._descriptions: Dict[str, str] = {}
        self._lock = threading.RLock()

    def register_action(self, name: str, handler: Callable, description: str = "") -> None:
        """Register a callable as the handler for an action type.

        Args:
            name: Action type the handler serves
            handler: Function or coroutine function to register
            description: Optional description of the action's purpose

        Raises:
            ActionRegistryError: If the name is taken or the handler is invalid
        """
        if not name or not name.strip():
            raise ActionRegistryError("Action type cannot be empty", operation="register")

        name = name.strip()

        if not callable(handler):
            raise ActionRegistryError(
                f"Action '{name}' must be a callable function",
                action_type=name,
                operation="register"
            )

        try:
            sig = inspect.signature(handler)
            if len(sig.parameters) == 0:
                logger.warning(f"Action '{name}' has no parameters - it won't be able to access the node input")
        except (ValueError, TypeError) as e:
            raise ActionRegistryError(
                f"Cannot inspect function signature for action '{name}': {e}",
                action_type=name,
                operation="register"
            )

        with self._lock:
            if name in self._handlers:
                raise ActionRegistryError(
                    f"Action '{name}' is already registered",
                    action_type=name,
                    operation="register"
                )
            self._handlers[name] = handler
            self._descriptions[name] = description.strip() if description else ""

        logger.info(f"Registered action '{name}' from {handler.__module__}.{getattr(handler, '__name__', repr(handler))}")

    def get_action(self, name: str) -> Callable:
        """Retrieve a registered handler by action type.

        Raises:
            ActionRegistryError: If the action is not registered
        """
        if not name or not name.strip():
            raise ActionRegistryError("Action type cannot be empty", operation="get")

        with self._lock:
            handler = self._handlers.get(name.strip())
        if handler is None:
            raise ActionRegistryError(f"Action '{name}' is not registered", action_type=name, operation="get")
        return handler

    def list_actions(self) -> Dict[str, str]:
        """List all registered actions with their descriptions."""
        with self._lock:
            return dict(self._descriptions)

    def unregister_action(self, name: str) -> bool:
        """Remove an action from the registry.

        Returns:
            True if the action was removed, False if it was not registered
        """
        if not name or not name.strip():
            raise ActionRegistryError("Action type cannot be empty", operation="unregister")

        with self._lock:
            removed = self._handlers.pop(name.strip(), None)
            self._descriptions.pop(name.strip(), None)

        if removed is not None:
            logger.info(f"Unregistered action '{name}'")
        return removed is not None

    def action_exists(self, name: str) -> bool:
        if not name or not name.strip():
            return False
        with self._lock:
            return name.strip() in self._handlers

    async def dispatch(
        self,
        action_type: str,
        node_input: Any,
        parameters: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Run the handler for ``action_type`` and return its result.

        Args:
            action_type: Registered action type
            node_input: Input record of the action node
            parameters: Keyword arguments for the handler
            timeout: Optional timeout in seconds

        Raises:
            ActionDispatchError: If the action is unknown, fails or times out
        """
        try:
            handler = self.get_action(action_type)
        except ActionRegistryError as e:
            raise ActionDispatchError(e.message, action_type=action_type) from e

        kwargs = dict(parameters or {})
        try:
            if inspect.iscoroutinefunction(handler):
                call = handler(node_input, **kwargs)
            else:
                call = asyncio.to_thread(handler, node_input, **kwargs)

            if timeout is not None:
                result = await asyncio.wait_for(call, timeout=timeout)
            else:
                result = await call

            if inspect.isawaitable(result):
                result = await result
            return result

        except asyncio.TimeoutError as e:
            raise ActionDispatchError(
                f"Action '{action_type}' timed out after {timeout} seconds",
                action_type=action_type
            ) from e
        except ActionDispatchError:
            raise
        except Exception as e:
            raise ActionDispatchError(f"Action '{action_type}' failed: {e}", action_type=action_type) from e
