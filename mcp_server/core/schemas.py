from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# =========================
# Enums
# =========================
class FieldType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    ARRAY = "array"
    OBJECT = "object"


class RelationType(str, Enum):
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    MANY_TO_MANY = "many-to-many"


class QueryStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# =========================
# SCHEMA REGISTRY
# =========================
class EntityField(BaseModel):
    name: str
    type: FieldType
    required: bool = False
    description: str = ""
    format: Optional[str] = None
    enum: Optional[List[str]] = None
    example: Optional[Any] = None

    model_config = ConfigDict(frozen=True)


class Index(BaseModel):
    name: str
    fields: List[str]
    unique: bool = False

    model_config = ConfigDict(frozen=True)


class EntityRelation(BaseModel):
    type: RelationType
    target_entity: str
    foreign_key: str
    description: str = ""

    model_config = ConfigDict(frozen=True)


class Entity(BaseModel):
    """
    A queryable relation. Field names double as column names
    and the entity name doubles as the table name.
    """

    name: str
    description: str = ""
    fields: Dict[str, EntityField]
    indexes: List[Index] = []
    relations: List[EntityRelation] = []

    model_config = ConfigDict(frozen=True)

    def has_field(self, name: str) -> bool:
        return name in self.fields


class Relation(BaseModel):
    name: str
    description: str = ""
    from_entity: str
    to_entity: str
    type: RelationType

    model_config = ConfigDict(frozen=True)


class Parameter(BaseModel):
    name: str
    type: FieldType
    required: bool = False
    description: str = ""
    example: Optional[Any] = None
    enum: Optional[List[str]] = None

    model_config = ConfigDict(frozen=True)


class ResponseSchema(BaseModel):
    type: str
    description: str = ""
    properties: Dict[str, EntityField] = {}

    model_config = ConfigDict(frozen=True)


class OperationExample(BaseModel):
    name: str
    description: str = ""
    request: "QueryRequest"
    response: Optional[Any] = None

    model_config = ConfigDict(frozen=True)


class Operation(BaseModel):
    """Self-describing documentation for one way of calling the query API."""

    name: str
    description: str = ""
    method: str
    path: str
    parameters: Dict[str, Parameter] = {}
    response: ResponseSchema
    examples: List[OperationExample] = []

    model_config = ConfigDict(frozen=True)


class MCPSchema(BaseModel):
    """
    The schema registry. Shared by every request and treated as read-only;
    QueryEngine.get_schema hands out deep copies for callers to keep.
    """

    version: str
    timestamp: datetime
    entities: Dict[str, Entity]
    relations: Dict[str, Relation] = {}
    operations: Dict[str, Operation] = {}

    model_config = ConfigDict(frozen=True)

    def get_entity(self, name: str) -> Optional[Entity]:
        return self.entities.get(name)

    def examples_for(self, entity: Optional[str] = None) -> List[OperationExample]:
        """
        Collect operation examples, optionally only those whose
        example request targets the given entity.
        """
        examples = []
        for operation in self.operations.values():
            for example in operation.examples:
                if entity is None or example.request.entity == entity:
                    examples.append(example)
        return examples


# =========================
# QUERY REQUEST
# =========================
class Filter(BaseModel):
    field: str
    operator: str  # eq/ne/gt/gte/lt/lte/like/ilike/in/is_null/is_not_null
    value: Optional[Any] = None
    logic: Optional[str] = None  # and/or, joins this filter to the previous one


class Join(BaseModel):
    entity: str
    type: str  # inner/left/right/full
    condition: str  # e.g. "processes.device_id = devices.id"


class OrderBy(BaseModel):
    field: str
    direction: str = ""


class Aggregate(BaseModel):
    function: str  # count/sum/avg/min/max
    field: str
    alias: Optional[str] = None


class QueryRequest(BaseModel):
    id: Optional[str] = None
    entity: str
    fields: List[str] = []
    filters: List[Filter] = []
    joins: List[Join] = []
    order_by: List[OrderBy] = []
    limit: Optional[int] = Field(default=None, ge=0)
    offset: Optional[int] = Field(default=None, ge=0)
    aggregates: List[Aggregate] = []
    group_by: List[str] = []
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


# =========================
# QUERY RESPONSE
# =========================
class QueryMetadata(BaseModel):
    row_count: int = 0
    execution_time: float = 0.0  # seconds spent in the storage round trip
    sql: Optional[str] = None
    query_plan: Optional[str] = None


class QueryResponse(BaseModel):
    id: str
    status: QueryStatus
    data: List[Dict[str, Any]] = []
    error: Optional[str] = None
    error_type: Optional[str] = None
    metadata: QueryMetadata = Field(default_factory=QueryMetadata)
    created_at: datetime
    completed_at: Optional[datetime] = None


class QueryValidationResult(BaseModel):
    valid: bool
    error: Optional[str] = None
    error_type: Optional[str] = None


OperationExample.model_rebuild()
