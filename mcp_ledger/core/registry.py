# mcp_ledger/core/registry.py
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Awaitable[Any]])

OperationHandler = Callable[[Any, BaseModel], Awaitable[Any]]
BeforeStateLoader = Callable[[Any, BaseModel], Awaitable[Optional[Dict[str, Any]]]]


@dataclass(frozen=True)
class OperationDescriptor:
    """
    Static description of one callable operation in the catalog.

    `handler` receives an OperationContext and the validated input model.
    Write-tier operations may also provide `before_state` so the audit
    snapshot records the entity as it was before the change.
    """

    name: str
    category: str
    summary: str
    input_model: Type[BaseModel]
    required_level: int
    capability_group: str
    handler: OperationHandler
    entity_type: Optional[str] = None
    entity_id_field: Optional[str] = None
    before_state: Optional[BeforeStateLoader] = field(default=None, compare=False)

    @property
    def input_schema(self) -> Dict[str, Any]:
        return self.input_model.model_json_schema()

    @property
    def is_write(self) -> bool:
        return self.required_level >= 1

    def listing(self) -> Dict[str, Any]:
        """Shape returned by list_operations_in_category."""
        return {
            "name": self.name,
            "summary": self.summary,
            "required_level": self.required_level,
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    """Immutable name -> descriptor mapping produced by RegistryBuilder.build()."""

    def __init__(self, descriptors: Dict[str, OperationDescriptor]):
        self._descriptors: Mapping[str, OperationDescriptor] = MappingProxyType(dict(descriptors))
        categories: Dict[str, List[OperationDescriptor]] = {}
        for descriptor in self._descriptors.values():
            categories.setdefault(descriptor.category, []).append(descriptor)
        self._categories: Mapping[str, tuple] = MappingProxyType(
            {name: tuple(ops) for name, ops in categories.items()}
        )

    def get(self, name: str) -> Optional[OperationDescriptor]:
        return self._descriptors.get(name)

    def in_category(self, category: str) -> tuple:
        return self._categories.get(category, ())

    @property
    def categories(self) -> List[str]:
        return sorted(self._categories.keys())

    @property
    def descriptors(self) -> Mapping[str, OperationDescriptor]:
        return self._descriptors

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)


class RegistryBuilder:
    """
    Collects operations while tool modules are imported.

    Tool modules decorate their handlers with `operation(...)`; once every
    module is loaded, `build()` freezes the collection. Registering the same
    name twice is a programming error and raises immediately.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, OperationDescriptor] = {}
        self._built: Optional[ToolRegistry] = None

    def operation(
        self,
        *,
        name: str,
        category: str,
        summary: str,
        input_model: Type[BaseModel],
        required_level: int = 0,
        capability_group: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id_field: Optional[str] = None,
        before_state: Optional[BeforeStateLoader] = None,
    ) -> Callable[[F], F]:
        if not 0 <= required_level <= 3:
            raise ValueError(f"Operation '{name}' has invalid required_level {required_level}.")
        if required_level >= 1 and not entity_type:
            raise ValueError(f"Write operation '{name}' must declare an entity_type for its snapshots.")

        def decorator(fn: F) -> F:
            if self._built is not None:
                raise RuntimeError(f"Cannot register '{name}': the registry has already been built.")
            if name in self._pending:
                raise ValueError(f"Duplicate operation name '{name}'.")
            self._pending[name] = OperationDescriptor(
                name=name,
                category=category,
                summary=summary,
                input_model=input_model,
                required_level=required_level,
                capability_group=capability_group or category,
                handler=fn,
                entity_type=entity_type,
                entity_id_field=entity_id_field,
                before_state=before_state,
            )
            logger.debug(f"RegistryBuilder: registered '{name}' (category={category}, level={required_level})")
            return fn

        return decorator

    def build(self) -> ToolRegistry:
        if self._built is None:
            self._built = ToolRegistry(self._pending)
            logger.info(
                f"Tool registry built with {len(self._built)} operations "
                f"across categories {self._built.categories}."
            )
        return self._built
