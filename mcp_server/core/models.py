from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    BigInteger,
    String,
    Text,
    TIMESTAMP,
    JSON,
    Index,
)
from sqlalchemy.sql import func

from mcp_server.core.database import Base


# Column names mirror the field names of the query schema registry one to one,
# so a structured query can address every registered field directly.


# =========================
# Device
# =========================
class Device(Base):
    __tablename__ = "devices"

    id = Column(String, primary_key=True)

    mac_address = Column(String, nullable=False, unique=True)
    hostname = Column(String, nullable=False, index=True)
    os = Column(String, nullable=False)
    platform = Column(String, nullable=False)
    version = Column(String, nullable=False)
    current_user = Column(String, nullable=False)
    user_id = Column(String, nullable=True)
    org_unit = Column(String, nullable=True)

    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
    last_seen_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), index=True
    )


# =========================
# Process
# =========================
class Process(Base):
    __tablename__ = "processes"
    __table_args__ = (Index("idx_processes_pid_device", "pid", "device_id"),)

    id = Column(String, primary_key=True)

    device_id = Column(
        String,
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    pid = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    cmdline = Column(JSON, nullable=True)
    username = Column(String)
    exe_path = Column(String)
    start_time = Column(BigInteger)  # unix seconds
    status = Column(String)
    sha256 = Column(String)
    version = Column(String)
    file_size = Column(BigInteger)

    collected_at = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )


# =========================
# Container
# =========================
class Container(Base):
    __tablename__ = "containers"

    id = Column(String, primary_key=True)

    device_id = Column(
        String,
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    container_id = Column(String, nullable=False, index=True)
    image = Column(String, nullable=False)
    names = Column(JSON, nullable=True)
    status = Column(String)
    ports = Column(JSON, nullable=True)
    labels = Column(JSON, nullable=True)
    container_created = Column(BigInteger)  # unix seconds

    collected_at = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )


# =========================
# Threat finding
# =========================
class ThreatFinding(Base):
    """
    Detections raised against a device, optionally tied to
    the process or container that triggered the rule.
    """

    __tablename__ = "threat_findings"

    id = Column(String, primary_key=True)

    device_id = Column(
        String,
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    process_id = Column(
        String, ForeignKey("processes.id", ondelete="SET NULL"), nullable=True
    )
    container_id = Column(
        String, ForeignKey("containers.id", ondelete="SET NULL"), nullable=True
    )

    description = Column(Text, nullable=False)
    severity = Column(String, nullable=False, index=True)  # low/medium/high/critical
    rule_id = Column(String, nullable=False)
    rule_name = Column(String, nullable=False)

    timestamp = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )


# =========================
# Browser session
# =========================
class BrowserSession(Base):
    __tablename__ = "browser_sessions"

    id = Column(String, primary_key=True)

    device_id = Column(
        String,
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    browser_fingerprint = Column(String, nullable=False)
    user_agent = Column(Text, nullable=False)
    tabs = Column(JSON, nullable=True)
    user_id = Column(String, nullable=True)

    collected_at = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
