from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from mcp_server.core.schemas import (
    Entity,
    EntityField,
    EntityRelation,
    FieldType,
    Filter,
    Index,
    Join,
    MCPSchema,
    Operation,
    OperationExample,
    OrderBy,
    Parameter,
    QueryRequest,
    Relation,
    RelationType,
    ResponseSchema,
)


# -----------------------------------------------------------------------------
# SCHEMA REGISTRY
# Purpose: describe every queryable telemetry entity, its fields, indexes and
# relations, plus documentation operations for the MCP endpoints.
# Why: the validator and compiler only trust names that appear here.
# -----------------------------------------------------------------------------

SCHEMA_VERSION = "1.0.0"

STRING = FieldType.STRING
INTEGER = FieldType.INTEGER
DATETIME = FieldType.DATETIME
ARRAY = FieldType.ARRAY
OBJECT = FieldType.OBJECT

ONE_TO_MANY = RelationType.ONE_TO_MANY
MANY_TO_ONE = RelationType.MANY_TO_ONE


def _fields(*definitions: EntityField) -> Dict[str, EntityField]:
    return {definition.name: definition for definition in definitions}


def _field(
    name: str,
    type: FieldType,
    required: bool,
    description: str,
    example: Any = None,
    enum: Optional[List[str]] = None,
) -> EntityField:
    return EntityField(
        name=name,
        type=type,
        required=required,
        description=description,
        example=example,
        enum=enum,
    )


# =========================
# Entities
# =========================
def _devices() -> Entity:
    return Entity(
        name="devices",
        description="Devices in the system with their metadata",
        fields=_fields(
            _field("id", STRING, True, "Unique device identifier", "dev-123"),
            _field("mac_address", STRING, True, "MAC address of the device", "00:11:22:33:44:55"),
            _field("hostname", STRING, True, "Device hostname", "laptop-001"),
            _field("os", STRING, True, "Operating system", "Linux"),
            _field("platform", STRING, True, "Platform architecture", "x86_64"),
            _field("version", STRING, True, "OS version", "Ubuntu 22.04"),
            _field("current_user", STRING, True, "Current logged-in user", "john.doe"),
            _field("user_id", STRING, False, "User identifier", "user-456"),
            _field("org_unit", STRING, False, "Organizational unit", "Engineering"),
            _field("created_at", DATETIME, True, "Creation timestamp", "2025-01-15T10:30:00Z"),
            _field("updated_at", DATETIME, True, "Last update timestamp", "2025-01-15T11:30:00Z"),
            _field("last_seen_at", DATETIME, True, "Last seen timestamp", "2025-01-15T12:30:00Z"),
        ),
        indexes=[
            Index(name="idx_devices_mac_address", fields=["mac_address"], unique=True),
            Index(name="idx_devices_hostname", fields=["hostname"]),
            Index(name="idx_devices_last_seen", fields=["last_seen_at"]),
        ],
        relations=[
            EntityRelation(type=ONE_TO_MANY, target_entity="processes", foreign_key="device_id", description="Processes running on this device"),
            EntityRelation(type=ONE_TO_MANY, target_entity="containers", foreign_key="device_id", description="Containers running on this device"),
            EntityRelation(type=ONE_TO_MANY, target_entity="threat_findings", foreign_key="device_id", description="Threat findings on this device"),
            EntityRelation(type=ONE_TO_MANY, target_entity="browser_sessions", foreign_key="device_id", description="Browser sessions on this device"),
        ],
    )


def _processes() -> Entity:
    return Entity(
        name="processes",
        description="Process information collected from devices",
        fields=_fields(
            _field("id", STRING, True, "Unique process record identifier", "proc-123"),
            _field("device_id", STRING, True, "Device identifier", "dev-123"),
            _field("pid", INTEGER, True, "Process ID", 1234),
            _field("name", STRING, True, "Process name", "nginx"),
            _field("cmdline", ARRAY, False, "Command line arguments", ["nginx", "-g", "daemon off;"]),
            _field("username", STRING, False, "User running the process", "www-data"),
            _field("exe_path", STRING, False, "Executable path", "/usr/sbin/nginx"),
            _field("start_time", INTEGER, False, "Process start time (unix timestamp)", 1704441600),
            _field("status", STRING, False, "Process status", "running"),
            _field("sha256", STRING, False, "SHA256 hash of executable", "abc123..."),
            _field("version", STRING, False, "Executable version", "1.18.0"),
            _field("file_size", INTEGER, False, "Executable file size in bytes", 1048576),
            _field("collected_at", DATETIME, True, "Data collection timestamp", "2025-01-15T10:30:00Z"),
            _field("created_at", DATETIME, True, "Record creation timestamp", "2025-01-15T10:30:00Z"),
        ),
        indexes=[
            Index(name="idx_processes_device_id", fields=["device_id"]),
            Index(name="idx_processes_pid_device", fields=["pid", "device_id"]),
            Index(name="idx_processes_collected_at", fields=["collected_at"]),
        ],
        relations=[
            EntityRelation(type=MANY_TO_ONE, target_entity="devices", foreign_key="device_id", description="Device this process is running on"),
            EntityRelation(type=ONE_TO_MANY, target_entity="threat_findings", foreign_key="process_id", description="Threat findings related to this process"),
        ],
    )


def _containers() -> Entity:
    return Entity(
        name="containers",
        description="Container information collected from devices",
        fields=_fields(
            _field("id", STRING, True, "Unique container record identifier", "cont-123"),
            _field("device_id", STRING, True, "Device identifier", "dev-123"),
            _field("container_id", STRING, True, "Docker container ID", "abc123def456"),
            _field("image", STRING, True, "Container image", "nginx:latest"),
            _field("names", ARRAY, False, "Container names", ["web-server"]),
            _field("status", STRING, False, "Container status", "running"),
            _field("ports", ARRAY, False, "Exposed ports", ["80/tcp", "443/tcp"]),
            _field("labels", OBJECT, False, "Container labels", {"env": "prod"}),
            _field("container_created", INTEGER, False, "Container creation time (unix timestamp)", 1704441600),
            _field("collected_at", DATETIME, True, "Data collection timestamp", "2025-01-15T10:30:00Z"),
            _field("created_at", DATETIME, True, "Record creation timestamp", "2025-01-15T10:30:00Z"),
        ),
        indexes=[
            Index(name="idx_containers_device_id", fields=["device_id"]),
            Index(name="idx_containers_container_id", fields=["container_id"]),
            Index(name="idx_containers_collected_at", fields=["collected_at"]),
        ],
        relations=[
            EntityRelation(type=MANY_TO_ONE, target_entity="devices", foreign_key="device_id", description="Device this container is running on"),
            EntityRelation(type=ONE_TO_MANY, target_entity="threat_findings", foreign_key="container_id", description="Threat findings related to this container"),
        ],
    )


def _threat_findings() -> Entity:
    return Entity(
        name="threat_findings",
        description="Security threat findings and alerts",
        fields=_fields(
            _field("id", STRING, True, "Unique threat finding identifier", "threat-123"),
            _field("device_id", STRING, True, "Device identifier", "dev-123"),
            _field("process_id", STRING, False, "Related process identifier", "proc-456"),
            _field("container_id", STRING, False, "Related container identifier", "cont-789"),
            _field("description", STRING, True, "Threat description", "Suspicious process detected"),
            _field(
                "severity",
                STRING,
                True,
                "Threat severity level",
                "high",
                enum=["low", "medium", "high", "critical"],
            ),
            _field("rule_id", STRING, True, "Detection rule identifier", "rule-001"),
            _field("rule_name", STRING, True, "Detection rule name", "Malware Detection"),
            _field("timestamp", DATETIME, True, "Threat detection timestamp", "2025-01-15T10:30:00Z"),
            _field("created_at", DATETIME, True, "Record creation timestamp", "2025-01-15T10:30:00Z"),
        ),
        indexes=[
            Index(name="idx_threats_device_id", fields=["device_id"]),
            Index(name="idx_threats_severity", fields=["severity"]),
            Index(name="idx_threats_timestamp", fields=["timestamp"]),
        ],
        relations=[
            EntityRelation(type=MANY_TO_ONE, target_entity="devices", foreign_key="device_id", description="Device where threat was detected"),
            EntityRelation(type=MANY_TO_ONE, target_entity="processes", foreign_key="process_id", description="Process related to the threat"),
            EntityRelation(type=MANY_TO_ONE, target_entity="containers", foreign_key="container_id", description="Container related to the threat"),
        ],
    )


def _browser_sessions() -> Entity:
    return Entity(
        name="browser_sessions",
        description="Browser session information collected from devices",
        fields=_fields(
            _field("id", STRING, True, "Unique browser session identifier", "session-123"),
            _field("device_id", STRING, True, "Device identifier", "dev-123"),
            _field("browser_fingerprint", STRING, True, "Browser fingerprint", "fp-abc123"),
            _field("user_agent", STRING, True, "Browser user agent", "Mozilla/5.0..."),
            _field("tabs", ARRAY, False, "Open tabs/URLs", ["https://example.com"]),
            _field("user_id", STRING, False, "User identifier", "user-456"),
            _field("collected_at", DATETIME, True, "Data collection timestamp", "2025-01-15T10:30:00Z"),
            _field("created_at", DATETIME, True, "Record creation timestamp", "2025-01-15T10:30:00Z"),
        ),
        indexes=[
            Index(name="idx_browser_sessions_device_id", fields=["device_id"]),
            Index(name="idx_browser_sessions_collected_at", fields=["collected_at"]),
        ],
        relations=[
            EntityRelation(type=MANY_TO_ONE, target_entity="devices", foreign_key="device_id", description="Device where browser session was captured"),
        ],
    )


def build_entities() -> Dict[str, Entity]:
    entities = [
        _devices(),
        _processes(),
        _containers(),
        _threat_findings(),
        _browser_sessions(),
    ]
    return {entity.name: entity for entity in entities}


# =========================
# Relations
# =========================
def build_relations() -> Dict[str, Relation]:
    relations = [
        Relation(name="device_processes", description="Processes running on devices", from_entity="devices", to_entity="processes", type=ONE_TO_MANY),
        Relation(name="device_containers", description="Containers running on devices", from_entity="devices", to_entity="containers", type=ONE_TO_MANY),
        Relation(name="device_threats", description="Threat findings on devices", from_entity="devices", to_entity="threat_findings", type=ONE_TO_MANY),
        Relation(name="process_threats", description="Threat findings related to processes", from_entity="processes", to_entity="threat_findings", type=ONE_TO_MANY),
        Relation(name="container_threats", description="Threat findings related to containers", from_entity="containers", to_entity="threat_findings", type=ONE_TO_MANY),
    ]
    return {relation.name: relation for relation in relations}


# =========================
# Operations (documentation only)
# =========================
QUERY_RESPONSE_SCHEMA = ResponseSchema(
    type="object",
    description="Query response with data and metadata",
    properties=_fields(
        EntityField(name="id", type=STRING, description="Query identifier"),
        EntityField(name="status", type=STRING, description="Query status"),
        EntityField(name="data", type=ARRAY, description="Query results"),
    ),
)


def _entity_parameter(entity: str) -> Parameter:
    return Parameter(
        name="entity",
        type=STRING,
        required=True,
        description=f"Must be '{entity}'",
        example=entity,
    )


def build_operations() -> Dict[str, Operation]:
    query_devices = Operation(
        name="query_devices",
        description="Query devices with filters, joins, and aggregations",
        method="POST",
        path="/mcp/query",
        parameters={
            "entity": _entity_parameter("devices"),
            "fields": Parameter(name="fields", type=ARRAY, description="Fields to select", example=["id", "hostname", "os"]),
            "filters": Parameter(name="filters", type=ARRAY, description="Filter conditions"),
            "joins": Parameter(name="joins", type=ARRAY, description="Join operations"),
            "order_by": Parameter(name="order_by", type=ARRAY, description="Ordering specification"),
            "limit": Parameter(name="limit", type=INTEGER, description="Maximum number of results", example=100),
            "offset": Parameter(name="offset", type=INTEGER, description="Number of results to skip", example=0),
        },
        response=QUERY_RESPONSE_SCHEMA,
        examples=[
            OperationExample(
                name="Get all Linux devices",
                description="Query devices running Linux OS",
                request=QueryRequest(
                    entity="devices",
                    fields=["id", "hostname", "os", "last_seen_at"],
                    filters=[Filter(field="os", operator="eq", value="Linux")],
                    order_by=[OrderBy(field="last_seen_at", direction="desc")],
                    limit=10,
                ),
            )
        ],
    )

    query_processes = Operation(
        name="query_processes",
        description="Query processes with filters, joins, and aggregations",
        method="POST",
        path="/mcp/query",
        parameters={"entity": _entity_parameter("processes")},
        response=ResponseSchema(type="object", description="Query response with data and metadata"),
        examples=[
            OperationExample(
                name="Get recently collected processes",
                description="Latest process records together with their device",
                request=QueryRequest(
                    entity="processes",
                    fields=["id", "name", "pid", "exe_path", "device_id"],
                    joins=[Join(entity="devices", type="inner", condition="processes.device_id = devices.id")],
                    order_by=[OrderBy(field="collected_at", direction="desc")],
                    limit=50,
                ),
            )
        ],
    )

    query_threats = Operation(
        name="query_threats",
        description="Query threat findings with filters and aggregations",
        method="POST",
        path="/mcp/query",
        parameters={"entity": _entity_parameter("threat_findings")},
        response=ResponseSchema(type="object", description="Query response with data and metadata"),
        examples=[
            OperationExample(
                name="Get critical threats",
                description="Query critical severity threat findings",
                request=QueryRequest(
                    entity="threat_findings",
                    filters=[Filter(field="severity", operator="eq", value="critical")],
                    order_by=[OrderBy(field="timestamp", direction="desc")],
                    limit=20,
                ),
            )
        ],
    )

    return {
        operation.name: operation
        for operation in (query_devices, query_processes, query_threats)
    }


def build_schema() -> MCPSchema:
    """
    Build the complete, read-only MCP schema.
    Two builds are equal except for `timestamp`.
    """
    return MCPSchema(
        version=SCHEMA_VERSION,
        timestamp=datetime.now(timezone.utc),
        entities=build_entities(),
        relations=build_relations(),
        operations=build_operations(),
    )
