# mcp_ledger/core/dispatcher.py
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError as PydanticValidationError

from .errors import NotFoundError, ValidationError, format_field_errors
from .registry import OperationDescriptor, ToolRegistry
from ..memory.storage_interfaces import AbstractMemoryStore
from ..permissions.service import PermissionService
from ..upstream.adapter import UpstreamClientAdapter
from ..upstream.xero_client import XeroApiClient

logger = logging.getLogger(__name__)

# Keys Xero uses for the identifier of a created record
_RESULT_ID_KEYS = ("InvoiceID", "CreditNoteID", "ContactID", "PaymentID", "id")


@dataclass
class OperationContext:
    """Everything a handler may touch on behalf of one caller."""

    user_id: str
    session_id: Optional[str]
    upstream: UpstreamClientAdapter
    memory: AbstractMemoryStore
    project_id: Optional[str] = None
    _client: Optional[XeroApiClient] = field(default=None, repr=False)

    async def xero(self) -> XeroApiClient:
        """Upstream client for this caller, refreshed if needed; fetched once per call."""
        if self._client is None:
            self._client = await self.upstream.get_client(self.user_id)
        return self._client


def _result_entity_id(result: Any) -> Optional[str]:
    if isinstance(result, dict):
        for key in _RESULT_ID_KEYS:
            if result.get(key):
                return str(result[key])
    return None


class GatewayDispatcher:
    """
    Backs the two meta-tools: category listing and operation execution.

    Dispatch is a single registry lookup. Read-tier operations run directly
    after validation; write-tier operations go through
    PermissionService.run_audited so each call leaves one terminal snapshot.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        permission_service: PermissionService,
        upstream: UpstreamClientAdapter,
        memory: AbstractMemoryStore,
    ):
        self.registry = registry
        self.permission_service = permission_service
        self.upstream = upstream
        self.memory = memory

    async def list_operations_in_category(self, user_id: str, category: str) -> Dict[str, Any]:
        category = (category or "").strip().lower()
        if category not in self.registry.categories:
            raise NotFoundError(
                f"Unknown category '{category}'.",
                action=f"Use one of: {', '.join(self.registry.categories)}.",
                extra={"categories": self.registry.categories},
            )

        levels: Dict[str, int] = {}
        visible = []
        for descriptor in self.registry.in_category(category):
            group = descriptor.capability_group
            if group not in levels:
                levels[group] = await self.permission_service.get_effective_level(user_id, group)
            if descriptor.required_level <= levels[group]:
                visible.append(descriptor.listing())

        logger.debug(
            f"Listed {len(visible)} of {len(self.registry.in_category(category))} operations "
            f"in '{category}' for user {user_id}."
        )
        return {"category": category, "operations": visible}

    def _resolve(self, name: str) -> OperationDescriptor:
        descriptor = self.registry.get(name)
        if descriptor is None:
            raise NotFoundError(
                f"Unknown operation '{name}'.",
                action="Call list_operations_in_category to see the operations you can use.",
            )
        return descriptor

    @staticmethod
    def _validate(descriptor: OperationDescriptor, arguments: Any) -> BaseModel:
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ValidationError(
                f"Arguments for '{descriptor.name}' must be an object.",
                fields=[{"field": "arguments", "message": "Expected a JSON object."}],
            )
        try:
            return descriptor.input_model.model_validate(arguments)
        except PydanticValidationError as e:
            fields = format_field_errors(e.errors())
            raise ValidationError(
                f"Invalid arguments for '{descriptor.name}': "
                + "; ".join(f"{f['field']}: {f['message']}" for f in fields),
                fields=fields,
                action="Check input_schema from list_operations_in_category and call again.",
            )

    async def execute_operation(
        self,
        *,
        user_id: str,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        descriptor = self._resolve(name)
        context = OperationContext(
            user_id=user_id,
            session_id=session_id,
            upstream=self.upstream,
            memory=self.memory,
            project_id=project_id,
        )
        arguments = arguments if arguments is not None else {}

        if descriptor.is_write:
            result = await self._execute_write(descriptor, context, arguments)
        else:
            validated = self._validate(descriptor, arguments)
            result = await descriptor.handler(context, validated)

        logger.info(f"Operation '{name}' completed for user {user_id} (session {session_id}).")
        return {"operation": name, "status": "ok", "result": jsonable_encoder(result)}

    async def _execute_write(
        self, descriptor: OperationDescriptor, context: OperationContext, arguments: Any
    ) -> Any:
        async def execute(validated: BaseModel) -> Any:
            return await descriptor.handler(context, validated)

        load_before_state = None
        if descriptor.before_state is not None:
            loader = descriptor.before_state

            async def load_before_state(validated: BaseModel) -> Optional[Dict[str, Any]]:
                return await loader(context, validated)

        entity_id_of = None
        if descriptor.entity_id_field:
            id_field = descriptor.entity_id_field

            def entity_id_of(validated: BaseModel) -> Optional[str]:
                value = getattr(validated, id_field, None)
                return str(value) if value is not None else None

        recorded_arguments = arguments if isinstance(arguments, dict) else {"arguments": arguments}
        return await self.permission_service.run_audited(
            user_id=context.user_id,
            operation_name=descriptor.name,
            capability_group=descriptor.capability_group,
            required_level=descriptor.required_level,
            entity_type=descriptor.entity_type,
            arguments=jsonable_encoder(recorded_arguments),
            validate=lambda _recorded: self._validate(descriptor, arguments),
            execute=execute,
            load_before_state=load_before_state,
            entity_id_of=entity_id_of,
            result_entity_id=_result_entity_id,
        )
