from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class EntityType(str, Enum):
    CLIENT = "client"
    PROJECT = "project"
    USER = "user"
    TASK = "task"


class MatchType(str, Enum):
    EXACT = "exact"
    NORMALIZED = "normalized"
    PARTIAL = "partial"
    FUZZY = "fuzzy"


class ResolvedEntity(BaseModel):
    """A directory record matched against a free-text query"""

    type: EntityType
    id: int
    name: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    match_type: MatchType
    parent_id: Optional[int] = None
    parent_name: Optional[str] = None


class EntityResolutionParams(BaseModel):
    query: str = Field(..., min_length=1, max_length=500)
    types: List[EntityType] = Field(default_factory=lambda: list(EntityType))
    min_confidence: float = Field(0.5, ge=0.0, le=1.0)
    limit: int = Field(5, ge=1, le=100, description="Max results per type")


class EntityResolutionResponse(BaseModel):
    query: str
    results: List[ResolvedEntity]
    total_matches: int
    cached: bool
    search_types: List[EntityType]


class DirectoryEntry(BaseModel):
    """Minimal directory record kept in the resolver snapshot"""

    id: int
    name: str
    parent_id: Optional[int] = None
    parent_name: Optional[str] = None


class DirectorySnapshot(BaseModel):
    clients: List[DirectoryEntry] = Field(default_factory=list)
    projects: List[DirectoryEntry] = Field(default_factory=list)
    users: List[DirectoryEntry] = Field(default_factory=list)
    tasks: List[DirectoryEntry] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=datetime.now)

    def entries_for(self, entity_type: EntityType) -> List[DirectoryEntry]:
        return {
            EntityType.CLIENT: self.clients,
            EntityType.PROJECT: self.projects,
            EntityType.USER: self.users,
            EntityType.TASK: self.tasks,
        }[entity_type]
