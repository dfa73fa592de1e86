# listbook/sync_api/schemas.py
# Wire models for the list sync endpoint. Unknown record fields pass through untouched.
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

RecordType = Literal['list', 'folder']


class ListRecord(BaseModel):
    model_config = ConfigDict(extra='allow', populate_by_name=True)

    id: str
    type: RecordType = 'list'
    rank: Optional[str] = None
    folder: Optional[str] = None
    open: Optional[bool] = None
    updated_at: Optional[str] = None
    deleted: bool = Field(default=False, alias='_deleted')

    @field_validator('id')
    @classmethod
    def id_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("record id must not be empty")
        return value


class SyncListsPayload(BaseModel):
    """Body of both GET responses and POST requests: {"lists": [...]}."""
    model_config = ConfigDict(extra='allow')

    lists: List[ListRecord] = Field(default_factory=list)
