from typing import List

from pydantic import BaseModel


class TagStat(BaseModel):
    name: str
    count: int


class CategoryStat(BaseModel):
    name: str
    count: int


class SweepResult(BaseModel):
    deleted: List[str]
    count: int
