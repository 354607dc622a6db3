from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Literal, Optional


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TemplateField(CamelModel):
    pdf_field: str = Field(alias="pdfField")
    key: str
    type: Literal["text", "number", "date"] = "text"
    required: bool = False


class TemplateUpsert(CamelModel):
    name: Optional[str] = None
    descriptors: Optional[List[TemplateField]] = Field(default=None, alias="fields")
    default_term_ids: Optional[List[int]] = Field(default=None, alias="defaultTermIds")
    default_regulation_ids: Optional[List[int]] = Field(default=None, alias="defaultRegulationIds")
    status: Optional[Literal["active", "inactive"]] = None


class ContractFromContact(CamelModel):
    contact_id: int = Field(alias="contactId")


class FieldValue(BaseModel):
    key: str
    value: Any = None


class ContractEdit(CamelModel):
    party_a: Optional[dict] = Field(default=None, alias="partyA")
    contract_terms: Optional[dict] = Field(default=None, alias="contractTerms")
    room_snapshot: Optional[dict] = Field(default=None, alias="roomSnapshot")
    field_values: Optional[List[FieldValue]] = Field(default=None, alias="fieldValues")
    term_ids: Optional[List[int]] = Field(default=None, alias="termIds")
    regulation_ids: Optional[List[int]] = Field(default=None, alias="regulationIds")
    mark_ready: bool = Field(default=False, alias="markReady")
    version: Optional[int] = None

    def changes(self) -> dict:
        """Supplied fields keyed the way they are stored on the contract."""
        return self.model_dump(by_alias=True, exclude={"mark_ready", "version"}, exclude_none=True)


class SignatureSubmit(CamelModel):
    signature_url: str = Field(alias="signatureUrl")
    version: Optional[int] = None


class VersionOnly(BaseModel):
    version: Optional[int] = None


class RenewalAnswer(BaseModel):
    approve: bool
    note: Optional[str] = None


class TenantDataUpdate(CamelModel):
    party_b: Optional[dict] = Field(default=None, alias="partyB")
    bikes: Optional[List[dict]] = None
    roommates: Optional[List[dict]] = None
    version: Optional[int] = None


class ExtendRequest(BaseModel):
    months: int
    note: Optional[str] = None
