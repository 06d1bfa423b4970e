"""Stack settings read from Pulumi config.

Plain settings are validated with pydantic when the program starts. Credentials
are only ever read with ``require_secret`` and stay wrapped in Pulumi outputs.
"""

import ipaddress
import re
from dataclasses import dataclass
from typing import Any, Optional

import pulumi
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from tunnel_stack.exceptions import StackConfigError

# Instance sizing by environment
INSTANCE_CONFIG = {
    "dev": {
        "shape": "VM.Standard.A1.Flex",  # Ampere, always-free eligible
        "ocpus": 1,
        "memory_gbs": 6,
    },
    "prod": {
        "shape": "VM.Standard.A1.Flex",
        "ocpus": 2,
        "memory_gbs": 12,
    },
}

# Ports used by the known app variants
KNOWN_APP_PORTS = (8080, 3000)

POSIX_NAME = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")


class StackSettings(BaseModel):
    """Validated, non-secret stack settings."""

    # Stack identity
    environment: str = Field(min_length=1)
    app_name: str = Field(min_length=1)

    # OCI placement
    compartment_id: str = Field(min_length=1)
    availability_domain: str = Field(min_length=1)

    # Access
    ssh_public_key: str = Field(min_length=1, description="Admin key for the default user")
    deploy_user: str = Field(default="deploy", min_length=1)
    deploy_ssh_public_key: str = Field(min_length=1)
    admin_ssh_cidrs: list[str] = Field(default_factory=list)

    # Instance
    instance_shape: str = Field(min_length=1)
    ocpus: float = Field(gt=0)
    memory_gbs: float = Field(gt=0)
    image_id: Optional[str] = None
    image_os: str = Field(default="Canonical Ubuntu", min_length=1)
    image_os_version: str = Field(default="22.04", min_length=1)

    # Network
    vcn_cidr: str = "10.0.0.0/16"
    subnet_cidr: str = "10.0.1.0/24"

    # Application container
    image: str = Field(min_length=1, description="Container image reference, without tag")
    registry: str = Field(default="ghcr.io", min_length=1)
    registry_username: str = Field(min_length=1)
    app_port: int = Field(default=8080, ge=1, le=65535)

    # Optional database
    install_database: bool = False
    database_name: str = Field(min_length=1)
    database_user: str = Field(min_length=1)

    # Cloudflare
    cloudflare_account_id: str = Field(min_length=1)
    cloudflare_zone_id: str = Field(min_length=1)
    domain: str = Field(min_length=1)
    subdomain: str = Field(min_length=1)

    # GitHub
    github_repository: str = Field(min_length=1)
    github_branch: str = Field(default="main", min_length=1)
    workflow_path: str = Field(default=".github/workflows/deploy.yml", min_length=1)

    @field_validator(
        "environment",
        "app_name",
        "compartment_id",
        "availability_domain",
        "ssh_public_key",
        "deploy_ssh_public_key",
        "image",
        "registry_username",
        "cloudflare_account_id",
        "cloudflare_zone_id",
        "domain",
        "subdomain",
        "github_repository",
    )
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("app_name", "deploy_user")
    @classmethod
    def posix_name(cls, value: str) -> str:
        if not POSIX_NAME.match(value):
            raise ValueError("must be a lowercase POSIX name")
        return value

    @field_validator("database_name", "database_user")
    @classmethod
    def database_identifier(cls, value: str) -> str:
        if not re.match(r"^[a-z_][a-z0-9_]*$", value):
            raise ValueError("must be a lowercase SQL identifier")
        return value

    @field_validator("vcn_cidr", "subnet_cidr")
    @classmethod
    def valid_cidr(cls, value: str) -> str:
        try:
            ipaddress.ip_network(value)
        except ValueError as e:
            raise ValueError(f"invalid CIDR: {e}") from e
        return value

    @field_validator("admin_ssh_cidrs")
    @classmethod
    def valid_admin_cidrs(cls, value: list[str]) -> list[str]:
        for cidr in value:
            try:
                ipaddress.ip_network(cidr)
            except ValueError as e:
                raise ValueError(f"invalid CIDR {cidr!r}: {e}") from e
        return value

    @model_validator(mode="after")
    def subnet_inside_vcn(self) -> "StackSettings":
        subnet = ipaddress.ip_network(self.subnet_cidr)
        vcn = ipaddress.ip_network(self.vcn_cidr)
        if subnet.version != vcn.version or not subnet.subnet_of(vcn):
            raise ValueError(f"subnet_cidr {self.subnet_cidr} is not inside vcn_cidr {self.vcn_cidr}")
        return self

    @property
    def name_prefix(self) -> str:
        return f"{self.app_name}-{self.environment}"

    @property
    def record_name(self) -> str:
        """DNS record name relative to the zone."""
        if self.environment == "prod":
            return self.subdomain
        return f"{self.environment}.{self.subdomain}"

    @property
    def hostname(self) -> str:
        return f"{self.record_name}.{self.domain}"

    @property
    def container_name(self) -> str:
        return self.app_name

    @property
    def env_file(self) -> str:
        return f"/etc/{self.app_name}/app.env"

    @property
    def tags(self) -> dict[str, str]:
        """Freeform tags applied to every OCI resource."""
        return {
            "environment": self.environment,
            "app": self.app_name,
            "managed_by": "pulumi",
        }


@dataclass
class StackSecrets:
    """Credentials, kept as secret Pulumi outputs."""

    registry_token: pulumi.Output[str]
    deploy_ssh_private_key: pulumi.Output[str]
    tunnel_secret: pulumi.Output[str]
    database_password: Optional[pulumi.Output[str]] = None


def _collect_config(config: pulumi.Config) -> dict[str, Any]:
    env = config.require("environment")
    app_name = config.get("app_name") or "app"
    sizing = INSTANCE_CONFIG.get(env, INSTANCE_CONFIG["dev"])

    admin_ssh_cidrs = config.get_object("admin_ssh_cidrs")
    if admin_ssh_cidrs is None:
        # Dev: reachable from anywhere; other environments must opt in
        admin_ssh_cidrs = ["0.0.0.0/0"] if env == "dev" else []

    values: dict[str, Any] = {
        "environment": env,
        "app_name": app_name,
        "compartment_id": config.require("compartment_id"),
        "availability_domain": config.require("availability_domain"),
        "ssh_public_key": config.require("ssh_public_key"),
        "deploy_user": config.get("deploy_user") or "deploy",
        "deploy_ssh_public_key": config.require("deploy_ssh_public_key"),
        "admin_ssh_cidrs": admin_ssh_cidrs,
        "instance_shape": config.get("instance_shape") or sizing["shape"],
        "ocpus": config.get_float("ocpus") or sizing["ocpus"],
        "memory_gbs": config.get_float("memory_gbs") or sizing["memory_gbs"],
        "image_id": config.get("image_id"),
        "image": config.require("image"),
        "registry_username": config.require("registry_username"),
        "app_port": config.get_int("app_port") or 8080,
        "install_database": config.get_bool("install_database") or False,
        "database_name": config.get("database_name") or app_name.replace("-", "_"),
        "database_user": config.get("database_user") or app_name.replace("-", "_"),
        "cloudflare_account_id": config.require("cloudflare_account_id"),
        "cloudflare_zone_id": config.require("cloudflare_zone_id"),
        "domain": config.require("domain"),
        "subdomain": config.get("subdomain") or app_name,
        "github_repository": config.require("github_repository"),
    }

    # Optional keys fall back to model defaults when unset
    for key in (
        "image_os",
        "image_os_version",
        "vcn_cidr",
        "subnet_cidr",
        "registry",
        "github_branch",
        "workflow_path",
    ):
        value = config.get(key)
        if value is not None:
            values[key] = value

    return values


def load_settings(config: Optional[pulumi.Config] = None) -> StackSettings:
    """Load and validate stack settings.

    Args:
        config: Pulumi config to read from (defaults to the project namespace)

    Returns:
        Validated StackSettings

    Raises:
        pulumi.ConfigMissingError: A required key is not set
        StackConfigError: One or more values are empty or invalid
    """
    config = config or pulumi.Config()
    values = _collect_config(config)

    try:
        settings = StackSettings(**values)
    except ValidationError as e:
        fields = [".".join(str(part) for part in err["loc"]) or "settings" for err in e.errors()]
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise StackConfigError(f"Invalid stack configuration: {details}", fields=fields) from e

    if settings.app_port not in KNOWN_APP_PORTS:
        pulumi.log.warn(f"app_port {settings.app_port} is not one of the known variants {KNOWN_APP_PORTS}")

    return settings


def ensure_not_blank(key: str):
    """Build an apply() check that rejects an empty secret."""

    def check(value: str) -> str:
        if not value or not value.strip():
            raise StackConfigError(f"Secret '{key}' must not be empty", fields=[key])
        return value

    return check


def require_secret(config: pulumi.Config, key: str) -> pulumi.Output[str]:
    """Read a required secret, failing on resolution if it is empty."""
    return pulumi.Output.secret(config.require_secret(key).apply(ensure_not_blank(key)))


def load_secrets(settings: StackSettings, config: Optional[pulumi.Config] = None) -> StackSecrets:
    """Load credentials from secret config.

    The database password is only required when the database is installed.
    """
    config = config or pulumi.Config()

    database_password = None
    if settings.install_database:
        database_password = require_secret(config, "database_password")

    return StackSecrets(
        registry_token=require_secret(config, "registry_token"),
        deploy_ssh_private_key=require_secret(config, "deploy_ssh_private_key"),
        tunnel_secret=require_secret(config, "tunnel_secret"),
        database_password=database_password,
    )
