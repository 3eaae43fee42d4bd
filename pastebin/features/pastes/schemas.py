from pydantic import BaseModel


class PasteFileOut(BaseModel):
    name: str
    hash: str
    url: str


class PasteOut(BaseModel):
    id: str
    owner: str
    created_at: str
    files: list[PasteFileOut]


class PasteListOut(BaseModel):
    owner: str
    ids: list[str]
