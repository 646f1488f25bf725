from typing import List

from pydantic import BaseModel


class EntitySuggestion(BaseModel):
    name: str
    display_name: str


class EntityOut(BaseModel):
    name: str
    display_name: str
    images: List[str]
    scope: str  # "deck" | "global"
