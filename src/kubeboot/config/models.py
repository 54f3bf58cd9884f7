# src/kubeboot/config/models.py

from datetime import timedelta
from ipaddress import IPv4Address
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from kubeboot.deploy.phases import StorageOptions
from kubeboot.errors import InvalidTopology
from kubeboot.topology.models import Topology, declare

MAX_CONTROL_PLANE = 10
MAX_WORKERS = 50


class NodeSpec(BaseModel):
    address: IPv4Address
    user: str
    role: Literal["control-plane", "worker", "load-balancer"]

    @field_validator("user")
    @classmethod
    def validate_user(cls, val: str) -> str:
        if not val.strip():
            raise ValueError("user must be a non-empty string")
        return val.strip()


class StorageSpec(BaseModel):
    """Shared NFS storage; `server` is a generated node name."""
    enabled: bool = True
    server: str = "controlplane01"
    share_dir: str = "/kubernetes"

    @field_validator("share_dir")
    @classmethod
    def validate_share_dir(cls, val: str) -> str:
        if not val.startswith("/"):
            raise ValueError("share_dir must be an absolute path")
        return val


class CredentialSettings(BaseModel):
    # kubeadm defaults: bootstrap token 24h, uploaded certificates 2h
    join_token_ttl_seconds: int = Field(default=86400, gt=0)
    certificate_key_ttl_seconds: int = Field(default=7200, gt=0)

    @property
    def join_token_ttl(self) -> timedelta:
        return timedelta(seconds=self.join_token_ttl_seconds)

    @property
    def certificate_key_ttl(self) -> timedelta:
        return timedelta(seconds=self.certificate_key_ttl_seconds)


class ExecutorSettings(BaseModel):
    playbooks_dir: str = "playbooks"
    forks: int = Field(default=10, ge=1)
    timeout_seconds: int = Field(default=1800, gt=0)
    ping_timeout_seconds: int = Field(default=30, gt=0)
    vault_password_file: Optional[str] = None
    ssh_key_file: Optional[str] = None


class BootstrapConfig(BaseModel):
    cluster_name: str = "kubernetes"
    api_port: int = Field(default=6443, ge=1, le=65535)
    gateway: Optional[IPv4Address] = None
    pod_network_cidr: str = "10.244.0.0/16"
    nodes: List[NodeSpec]
    storage: Optional[StorageSpec] = None
    credentials: CredentialSettings = CredentialSettings()
    executor: ExecutorSettings = ExecutorSettings()
    inventory_vars: Dict[str, str] = Field(default_factory=dict)
    state_dir: str = ".kubeboot"

    @model_validator(mode="after")
    def validate_limits(self) -> "BootstrapConfig":
        cp = sum(1 for n in self.nodes if n.role == "control-plane")
        workers = sum(1 for n in self.nodes if n.role == "worker")
        if not 1 <= cp <= MAX_CONTROL_PLANE:
            raise ValueError(f"control-plane node count must be 1-{MAX_CONTROL_PLANE}, got {cp}")
        if workers > MAX_WORKERS:
            raise ValueError(f"worker node count must be 0-{MAX_WORKERS}, got {workers}")
        return self

    def to_topology(self) -> Topology:
        return declare(
            [(str(n.address), n.user, n.role) for n in self.nodes],
            api_port=self.api_port,
        )

    def storage_options(self, topology: Topology) -> Optional[StorageOptions]:
        if self.storage is None or not self.storage.enabled:
            return None
        if self.storage.server not in topology.by_name():
            raise InvalidTopology(
                f"storage.server '{self.storage.server}' is not a node "
                f"(known: {', '.join(n.name for n in topology.nodes)})"
            )
        return StorageOptions(server=self.storage.server, share_dir=self.storage.share_dir)

    def inventory_variables(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        if self.gateway is not None:
            out["gateway"] = str(self.gateway)
        out.update(self.inventory_vars)
        return out
