"""Stack settings module.

This module defines the tunables of the autoscaling lab and how they are read
from Pulumi stack configuration. Every key is optional; defaults reproduce the
reference environment (t3.micro instances, 1-3 capacity, 30/10 request alarms).

Settings are read either through `pulumi.Config` inside a running program or,
for the CLI, straight from the project's Pulumi.yaml / Pulumi.<stack>.yaml files.
"""

import ipaddress
import logging
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import pulumi
import yaml

logger = logging.getLogger(__name__)

# Subnets are carved as /20 blocks, one public and one private per AZ
SUBNET_PREFIX_LENGTH = 20

# CloudWatch standard-resolution alarms evaluate whole minutes
ALARM_PERIOD_GRANULARITY = 60

# Amazon Linux 2 root snapshot size
MIN_ROOT_VOLUME_GIB = 8

INSTANCE_TYPE_PATTERN = re.compile(r"^[a-z][a-z0-9-]*\.[a-z0-9]+$")
VM_BYTES_PATTERN = re.compile(r"^[1-9][0-9]*[KMG]?$")


class ConfigError(Exception):
    """Raised when stack settings are missing, malformed or inconsistent."""

    pass


@dataclass
class StackSettings:
    """Tunables of the autoscaling lab stack."""

    instance_type: str = "t3.micro"
    vpc_cidr: str = "10.0.0.0/16"
    availability_zones: int = 2
    min_size: int = 1
    max_size: int = 3
    desired_capacity: int = 1
    health_check_grace_period: int = 300  # seconds
    scaling_cooldown: int = 300  # seconds
    scale_up_threshold: int = 30  # RequestCount sum per period
    scale_up_period: int = 60
    scale_up_evaluation_periods: int = 1
    scale_down_threshold: int = 10
    scale_down_period: int = 120
    scale_down_evaluation_periods: int = 3
    ssh_cidr: str = "0.0.0.0/0"
    volume_size: int = 8  # GiB
    stress_interval: int = 300  # seconds between stress rounds
    stress_duration: int = 180  # seconds per round
    stress_cpu_workers: int = 4
    stress_vm_bytes: str = "512M"
    environment: str = "test"

    @staticmethod
    def config_key(field_name: str) -> str:
        """Convert a field name to its camelCase stack config key."""
        head, *rest = field_name.split("_")
        return head + "".join(part.capitalize() for part in rest)

    @classmethod
    def config_keys(cls) -> list[str]:
        """All stack config keys understood by the lab."""
        return [cls.config_key(f.name) for f in fields(cls)]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary keyed by stack config key."""
        return {self.config_key(f.name): getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StackSettings":
        """Create from a dictionary keyed by stack config key.

        Values may be strings (as stored by `pulumi config set`); integer
        fields are coerced. Unknown keys are ignored.

        Raises:
            ConfigError: If a value cannot be coerced to the field's type
        """
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            key = cls.config_key(f.name)
            if key not in data or data[key] is None:
                continue
            value = data[key]
            if f.type in (int, "int"):
                if isinstance(value, bool):
                    raise ConfigError(f"{key} must be an integer, got {value!r}")
                try:
                    kwargs[f.name] = int(value)
                except (TypeError, ValueError) as e:
                    raise ConfigError(f"{key} must be an integer, got {value!r}") from e
            else:
                kwargs[f.name] = str(value)
        return cls(**kwargs)

    @classmethod
    def from_pulumi_config(cls, config: pulumi.Config | None = None) -> "StackSettings":
        """Read settings from the current Pulumi stack configuration."""
        config = config or pulumi.Config()
        data = {}
        for key in cls.config_keys():
            value = config.get(key)
            if value is not None:
                data[key] = value
        return cls.from_dict(data)

    def validation_errors(self) -> list[str]:
        """Check the settings for internal consistency.

        Returns:
            List of human-readable problems (empty if the settings are usable)
        """
        errors: list[str] = []

        if not INSTANCE_TYPE_PATTERN.match(self.instance_type):
            errors.append(f"instanceType is not a valid instance type: {self.instance_type!r}")

        if self.min_size < 0:
            errors.append(f"minSize must not be negative, got {self.min_size}")
        if not self.min_size <= self.desired_capacity <= self.max_size:
            errors.append(
                "Capacity must satisfy minSize <= desiredCapacity <= maxSize "
                f"(got {self.min_size} / {self.desired_capacity} / {self.max_size})"
            )
        if self.max_size < 1:
            errors.append(f"maxSize must be at least 1, got {self.max_size}")

        if self.scale_up_threshold <= self.scale_down_threshold:
            errors.append(
                f"scaleUpThreshold ({self.scale_up_threshold}) must exceed "
                f"scaleDownThreshold ({self.scale_down_threshold})"
            )
        for name in ("scale_up_period", "scale_down_period"):
            value = getattr(self, name)
            if value <= 0 or value % ALARM_PERIOD_GRANULARITY:
                errors.append(
                    f"{self.config_key(name)} must be a positive multiple of "
                    f"{ALARM_PERIOD_GRANULARITY}, got {value}"
                )
        for name in ("scale_up_evaluation_periods", "scale_down_evaluation_periods"):
            value = getattr(self, name)
            if value < 1:
                errors.append(f"{self.config_key(name)} must be at least 1, got {value}")
        for name in ("health_check_grace_period", "scaling_cooldown"):
            value = getattr(self, name)
            if value < 0:
                errors.append(f"{self.config_key(name)} must not be negative, got {value}")

        if self.availability_zones < 2:
            errors.append(
                "availabilityZones must be at least 2 for an application load balancer, "
                f"got {self.availability_zones}"
            )
        errors.extend(self._network_errors())

        if self.volume_size < MIN_ROOT_VOLUME_GIB:
            errors.append(
                f"volumeSize must be at least {MIN_ROOT_VOLUME_GIB} GiB, got {self.volume_size}"
            )

        if self.stress_cpu_workers < 1:
            errors.append(f"stressCpuWorkers must be at least 1, got {self.stress_cpu_workers}")
        if not VM_BYTES_PATTERN.match(self.stress_vm_bytes):
            errors.append(f"stressVmBytes is not a stress size: {self.stress_vm_bytes!r}")
        if self.stress_duration < 1:
            errors.append(f"stressDuration must be at least 1, got {self.stress_duration}")
        if self.stress_duration >= self.stress_interval:
            errors.append(
                f"stressDuration ({self.stress_duration}) must be shorter than "
                f"stressInterval ({self.stress_interval})"
            )

        return errors

    def _network_errors(self) -> list[str]:
        errors = []
        try:
            vpc = ipaddress.IPv4Network(self.vpc_cidr)
        except ValueError as e:
            errors.append(f"vpcCidr is not a valid IPv4 network: {e}")
        else:
            if vpc.prefixlen > SUBNET_PREFIX_LENGTH:
                errors.append(
                    f"vpcCidr must be /{SUBNET_PREFIX_LENGTH} or larger, got /{vpc.prefixlen}"
                )
            else:
                available = 2 ** (SUBNET_PREFIX_LENGTH - vpc.prefixlen)
                needed = 2 * self.availability_zones
                if needed > available:
                    errors.append(
                        f"vpcCidr {self.vpc_cidr} holds {available} /{SUBNET_PREFIX_LENGTH} "
                        f"subnets but {needed} are needed"
                    )
        try:
            ipaddress.IPv4Network(self.ssh_cidr)
        except ValueError as e:
            errors.append(f"sshCidr is not a valid IPv4 network: {e}")
        return errors

    def validate(self) -> None:
        """Raise ConfigError listing every problem found."""
        errors = self.validation_errors()
        if errors:
            raise ConfigError("Invalid stack settings:\n  - " + "\n  - ".join(errors))

    def summary(self) -> str:
        """One-line description used in program logs."""
        return (
            f"{self.instance_type} x {self.min_size}-{self.max_size} "
            f"(desired {self.desired_capacity}) across {self.availability_zones} AZs, "
            f"scale up > {self.scale_up_threshold} req/{self.scale_up_period}s, "
            f"scale down < {self.scale_down_threshold} req/{self.scale_down_period}s"
        )


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}")
    return data


def _plain_value(value: Any) -> Any:
    """Unwrap a config entry; secrets and structured values yield None."""
    if isinstance(value, dict):
        if "secure" in value:
            return None
        return value.get("value", value.get("default"))
    if isinstance(value, list):
        return None
    return value


def load_stack_settings(stack: str, project_dir: str | Path = ".") -> StackSettings:
    """Load settings for a stack from the Pulumi project files.

    Project-level defaults declared under `config:` in Pulumi.yaml are applied
    first, then the stack file's values for keys in the project namespace.

    Args:
        stack: Stack name (reads Pulumi.<stack>.yaml)
        project_dir: Directory containing Pulumi.yaml

    Returns:
        StackSettings for the stack

    Raises:
        ConfigError: If a file is missing, unreadable or holds bad values
    """
    project_dir = Path(project_dir).expanduser()
    project = _read_yaml(project_dir / "Pulumi.yaml")
    project_name = project.get("name")
    if not project_name:
        raise ConfigError(f"Pulumi.yaml in {project_dir} has no project name")

    data: dict[str, Any] = {}
    prefix = f"{project_name}:"

    for key, value in (project.get("config") or {}).items():
        key = str(key).removeprefix(prefix)
        plain = _plain_value(value)
        if plain is not None and ":" not in key:
            data[key] = plain

    stack_path = project_dir / f"Pulumi.{stack}.yaml"
    stack_file = _read_yaml(stack_path)
    for key, value in (stack_file.get("config") or {}).items():
        key = str(key)
        if not key.startswith(prefix):
            continue
        plain = _plain_value(value)
        if plain is not None:
            data[key.removeprefix(prefix)] = plain

    unknown = sorted(set(data) - set(StackSettings.config_keys()))
    if unknown:
        logger.warning(f"Ignoring unknown config keys in {stack_path.name}: {', '.join(unknown)}")

    logger.debug(f"Loaded {len(data)} config values for stack {stack}")
    return StackSettings.from_dict(data)
