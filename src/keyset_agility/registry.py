"""
Key registry.

Maps a key type url to the KeyHandler that validates, generates and
instantiates primitives for that type, and a primitive class to the
PrimitiveWrapper that turns a PrimitiveSet into a single user-facing value.

Registration is rare and serialized by a lock. Lookups never lock: the
internal dicts are replaced, never mutated, so a reader always sees a
complete mapping.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Generic, Mapping, Optional, Type, TypeVar

from .errors import (
    AlreadyRegisteredError,
    InvalidKeyError,
    UnknownKeyTypeError,
    UnsupportedPrimitiveError,
)
from .key_types import KeyMaterial, KeyMaterialType

logger = logging.getLogger(__name__)

P = TypeVar("P")


class KeyHandler(ABC):
    """
    Per-key-type logic: validation, generation and primitive instantiation.

    Subclasses set ``type_url``, ``material_class`` and ``capabilities``
    (the primitive classes they can produce).
    """

    type_url: str = ""
    material_class: Type[KeyMaterial] = KeyMaterial
    capabilities: FrozenSet[type] = frozenset()

    @property
    def material_type(self) -> KeyMaterialType:
        return self.material_class.MATERIAL_TYPE

    def supports(self, capability: type) -> bool:
        return capability in self.capabilities

    @abstractmethod
    def validate_key(self, key: KeyMaterial) -> None:
        """Raises InvalidKeyError if ``key`` is malformed."""
        ...

    @abstractmethod
    def new_key(self, parameters: Mapping[str, Any]) -> KeyMaterial:
        """Generate fresh material. Raises InvalidKeyError on bad parameters."""
        ...

    @abstractmethod
    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        ...

    def primitive(self, key: KeyMaterial, capability: Type[P]) -> P:
        """
        Instantiate ``capability`` from validated key material.

        Raises:
            UnsupportedPrimitiveError: If this key type cannot produce it
            InvalidKeyError: If the material is malformed
        """
        if not self.supports(capability):
            raise UnsupportedPrimitiveError(
                f"Key type {self.type_url} does not support {capability.__name__}"
            )
        self._check_material_class(key)
        self.validate_key(key)
        return self._primitive(key, capability)

    def parse_key(self, data: Mapping[str, Any]) -> KeyMaterial:
        """Rebuild and validate material from its dict form."""
        key = self.material_class.from_dict(dict(data))
        self.validate_key(key)
        return key

    def _check_material_class(self, key: KeyMaterial) -> None:
        if not isinstance(key, self.material_class):
            raise InvalidKeyError(
                f"Expected {self.material_class.__name__}, got {type(key).__name__}"
            )


class PrivateKeyHandler(KeyHandler):
    """Handler for key types with a public counterpart."""

    public_type_url: str = ""

    @abstractmethod
    def public_key(self, key: KeyMaterial) -> KeyMaterial:
        ...


class PrimitiveWrapper(ABC, Generic[P]):
    """Builds the user-facing primitive over a PrimitiveSet."""

    primitive_class: Type[Any] = object

    @abstractmethod
    def wrap(self, primitive_set: Any) -> P:
        ...


class KeyRegistry:
    """Process-wide mapping of key types to handlers and primitives to wrappers."""

    def __init__(self) -> None:
        self._handlers: Mapping[str, KeyHandler] = MappingProxyType({})
        self._wrappers: Mapping[type, PrimitiveWrapper] = MappingProxyType({})
        self._lock = threading.Lock()

    def register(self, type_url: str, handler: KeyHandler) -> None:
        """
        Bind ``handler`` to ``type_url``.

        Re-registering a handler of the same class is a no-op.

        Raises:
            AlreadyRegisteredError: If a different handler is already bound
        """
        with self._lock:
            existing = self._handlers.get(type_url)
            if existing is not None:
                if type(existing) is type(handler):
                    return
                raise AlreadyRegisteredError(
                    f"Key type {type_url} is already registered to {type(existing).__name__}"
                )
            handlers: Dict[str, KeyHandler] = dict(self._handlers)
            handlers[type_url] = handler
            self._handlers = MappingProxyType(handlers)
        logger.debug("Registered key handler %s for %s", type(handler).__name__, type_url)

    def register_handler(self, handler: KeyHandler) -> None:
        self.register(handler.type_url, handler)

    def lookup(self, type_url: str) -> KeyHandler:
        """
        Raises:
            UnknownKeyTypeError: If no handler is registered for ``type_url``
        """
        handler = self._handlers.get(type_url)
        if handler is None:
            raise UnknownKeyTypeError(f"No key handler registered for {type_url}")
        return handler

    def is_registered(self, type_url: str) -> bool:
        return type_url in self._handlers

    def register_wrapper(self, wrapper: PrimitiveWrapper) -> None:
        """Same idempotency rule as ``register``, keyed by primitive class."""
        primitive_class = wrapper.primitive_class
        with self._lock:
            existing = self._wrappers.get(primitive_class)
            if existing is not None:
                if type(existing) is type(wrapper):
                    return
                raise AlreadyRegisteredError(
                    f"A wrapper for {primitive_class.__name__} is already registered"
                )
            wrappers: Dict[type, PrimitiveWrapper] = dict(self._wrappers)
            wrappers[primitive_class] = wrapper
            self._wrappers = MappingProxyType(wrappers)

    def wrapper(self, primitive_class: type) -> PrimitiveWrapper:
        """
        Raises:
            UnsupportedPrimitiveError: If no wrapper handles ``primitive_class``
        """
        wrapper = self._wrappers.get(primitive_class)
        if wrapper is None:
            raise UnsupportedPrimitiveError(
                f"No wrapper registered for {getattr(primitive_class, '__name__', primitive_class)}"
            )
        return wrapper


_default_registry = KeyRegistry()
_default_lock = threading.Lock()
_default_ready = False


def default_registry() -> KeyRegistry:
    """Return the process-wide registry, registering built-ins on first use."""
    global _default_ready
    if not _default_ready:
        with _default_lock:
            if not _default_ready:
                from .handlers import register_all

                register_all(_default_registry)
                _default_ready = True
    return _default_registry


def resolve(registry: Optional[KeyRegistry]) -> KeyRegistry:
    return registry if registry is not None else default_registry()
