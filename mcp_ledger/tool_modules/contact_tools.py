# mcp_ledger/tool_modules/contact_tools.py
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from ..core.dispatcher import OperationContext
from ..core.global_registry import REGISTRY_BUILDER
from ..upstream.formatting import summarize_contact

logger = logging.getLogger(__name__)


class GetContactsInput(BaseModel):
    limit: int = Field(default=20, ge=1, le=100)


class SearchContactsInput(BaseModel):
    search_term: str = Field(min_length=2, max_length=100, description="Matches name, email or account number.")


class ContactDetails(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    account_number: Optional[str] = Field(default=None, max_length=50)

    def details_to_xero(self) -> Dict[str, Any]:
        contact: Dict[str, Any] = {}
        if self.email is not None:
            contact["EmailAddress"] = self.email
        if self.phone is not None:
            contact["Phones"] = [{"PhoneType": "DEFAULT", "PhoneNumber": self.phone}]
        if self.account_number is not None:
            contact["AccountNumber"] = self.account_number
        return contact


class CreateContactInput(ContactDetails):
    name: str = Field(min_length=1, max_length=255)


class UpdateContactInput(ContactDetails):
    contact_id: str = Field(min_length=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)

    @model_validator(mode="after")
    def _has_changes(self):
        if not self.details_to_xero() and self.name is None:
            raise ValueError("provide at least one field to change")
        return self


class ContactIdInput(BaseModel):
    contact_id: str = Field(min_length=1)


async def _contact_before_state(ctx: OperationContext, args: ContactIdInput) -> Dict[str, Any]:
    client = await ctx.xero()
    return await client.get_contact(args.contact_id)


@REGISTRY_BUILDER.operation(
    name="get_contacts",
    category="contacts",
    summary="List customers and suppliers.",
    input_model=GetContactsInput,
)
async def get_contacts(ctx: OperationContext, args: GetContactsInput) -> Dict[str, Any]:
    client = await ctx.xero()
    contacts = [summarize_contact(c) for c in (await client.get_contacts())[: args.limit]]
    return {"count": len(contacts), "contacts": contacts}


@REGISTRY_BUILDER.operation(
    name="search_contacts",
    category="contacts",
    summary="Find contacts by name, email or account number.",
    input_model=SearchContactsInput,
)
async def search_contacts(ctx: OperationContext, args: SearchContactsInput) -> Dict[str, Any]:
    client = await ctx.xero()
    contacts = [summarize_contact(c) for c in await client.get_contacts(search_term=args.search_term)]
    return {"count": len(contacts), "contacts": contacts}


@REGISTRY_BUILDER.operation(
    name="create_contact",
    category="contacts",
    summary="Create a new customer or supplier contact.",
    input_model=CreateContactInput,
    required_level=1,
    entity_type="contact",
)
async def create_contact(ctx: OperationContext, args: CreateContactInput) -> Dict[str, Any]:
    client = await ctx.xero()
    return await client.create_contact({"Name": args.name, **args.details_to_xero()})


@REGISTRY_BUILDER.operation(
    name="update_contact",
    category="contacts",
    summary="Change a contact's name, email, phone or account number.",
    input_model=UpdateContactInput,
    required_level=2,
    entity_type="contact",
    entity_id_field="contact_id",
    before_state=_contact_before_state,
)
async def update_contact(ctx: OperationContext, args: UpdateContactInput) -> Dict[str, Any]:
    changes = args.details_to_xero()
    if args.name is not None:
        changes["Name"] = args.name
    client = await ctx.xero()
    return await client.update_contact(args.contact_id, changes)


@REGISTRY_BUILDER.operation(
    name="delete_contact",
    category="contacts",
    summary="Archive a contact. Xero keeps archived contacts for history; they no longer appear in lists.",
    input_model=ContactIdInput,
    required_level=3,
    entity_type="contact",
    entity_id_field="contact_id",
    before_state=_contact_before_state,
)
async def delete_contact(ctx: OperationContext, args: ContactIdInput) -> Dict[str, Any]:
    client = await ctx.xero()
    return await client.update_contact(args.contact_id, {"ContactStatus": "ARCHIVED"})


logger.info("Contact operations registered.")
