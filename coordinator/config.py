"""
Build plan configuration for Fleetbuild.

The plan (``dist.build.json`` by default) lists the nodes taking part in a
run, how to install dependencies and build on them, and optionally how to
verify the collected outputs. Keys in the JSON document are camelCase;
the dataclasses below use snake_case.
"""

import json
import logging
import os
import socket
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from core.build_config import BUILD_CONFIG_NAME
from core.errors import ConfigError


logger = logging.getLogger(__name__)

PLAN_FILE_NAME = "dist.build.json"
DEFAULT_PROGRESS_PORT = 7380

NODE_TYPES = ("local", "ssh")


def get_local_ip() -> str:
    """
    Get local IP address.

    Returns:
        Local IP address as string
    """
    try:
        # Create a socket to determine local IP
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


def _pick(data: Dict[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    """Read a key accepting both its camelCase and snake_case spelling."""
    if camel in data:
        return data[camel]
    return data.get(snake, default)


@dataclass
class ArtifactSpec:
    """Remote path or glob collected into a local directory after the build."""
    remote: str
    local: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ArtifactSpec':
        try:
            return cls(remote=str(data['remote']), local=str(data['local']))
        except (KeyError, TypeError):
            raise ConfigError(f"Artifact entries need 'remote' and 'local' keys, got {data!r}")


@dataclass
class NodeConfig:
    """
    Configuration for one worker node.

    Local nodes only need a working directory. SSH nodes also need a host
    and either a password or a private key.
    """

    node_type: str = "local"  # "local" or "ssh"
    weight: float = 1.0
    working_dir: str = ""

    # SSH connection
    host: Optional[str] = None
    port: int = 22
    username: Optional[str] = None
    password: Optional[str] = None
    private_key: Optional[str] = None  # key file path or PEM text
    temp_dir: str = "/tmp"
    keepalive_interval: int = 30  # seconds

    artifacts: List[ArtifactSpec] = field(default_factory=list)

    def validate(self, index: int):
        """
        Check the entry is usable.

        Raises:
            ConfigError: On unknown node type, bad weight or missing fields
        """
        if self.node_type not in NODE_TYPES:
            raise ConfigError(f"Node {index}: unknown node type '{self.node_type}'")
        if not isinstance(self.weight, (int, float)) or self.weight <= 0:
            raise ConfigError(f"Node {index}: weight must be a positive number, got {self.weight!r}")
        if not self.working_dir:
            raise ConfigError(f"Node {index}: workingDir is required")
        if self.node_type == "ssh" and not self.host:
            raise ConfigError(f"Node {index}: ssh nodes require a host")

    @property
    def label(self) -> str:
        if self.node_type == "ssh":
            return f"{self.username + '@' if self.username else ''}{self.host}:{self.working_dir}"
        return f"local:{self.working_dir}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NodeConfig':
        """Create a node config from a plan entry."""
        return cls(
            node_type=_pick(data, 'nodeType', 'node_type', "local"),
            weight=data.get('weight', 1.0),
            working_dir=_pick(data, 'workingDir', 'working_dir', ""),
            host=data.get('host'),
            port=int(data.get('port', 22)),
            username=data.get('username'),
            password=data.get('password'),
            private_key=_pick(data, 'privateKey', 'private_key'),
            temp_dir=_pick(data, 'tempDir', 'temp_dir', "/tmp"),
            keepalive_interval=int(_pick(data, 'keepaliveInterval', 'keepalive_interval', 30)),
            artifacts=[ArtifactSpec.from_dict(a) for a in data.get('artifacts', [])]
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with credentials masked."""
        data = asdict(self)
        if data['password']:
            data['password'] = "***"
        if data['private_key'] and "PRIVATE KEY" in data['private_key']:
            data['private_key'] = "***"
        return data


@dataclass
class VerifyConfig:
    """Post-build output check."""
    output_directory: str
    filename_regex: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VerifyConfig':
        output_directory = _pick(data, 'outputDirectory', 'output_directory')
        if not output_directory:
            raise ConfigError("verify.outputDirectory is required when verify is set")
        return cls(
            output_directory=output_directory,
            filename_regex=_pick(data, 'filenameRegex', 'filename_regex')
        )


@dataclass
class BuildPlanConfig:
    """
    Top-level configuration of one orchestrated run.
    """

    nodes: List[NodeConfig] = field(default_factory=list)

    # Commands run in each node's working directory
    build_command: List[str] = field(default_factory=lambda: ["python3", "-m", "worker.runner"])
    install_command: List[str] = field(
        default_factory=lambda: ["python3", "-m", "pip", "install", "-r", "requirements.txt"]
    )

    # Project layout
    build_config: str = BUILD_CONFIG_NAME
    archive_name: str = "dist.zip"

    # Progress aggregation endpoint
    progress_host: Optional[str] = None  # address nodes use to reach us
    progress_port: int = DEFAULT_PROGRESS_PORT

    verify: Optional[VerifyConfig] = None

    # Logging
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    def __post_init__(self):
        if self.progress_host is None:
            self.progress_host = get_local_ip()

    def validate(self):
        """
        Validate the whole plan.

        Raises:
            ConfigError: If the plan cannot be run
        """
        if not self.nodes:
            raise ConfigError("Build plan must list at least one node")
        for index, node in enumerate(self.nodes):
            node.validate(index)
        if not self.build_command:
            raise ConfigError("buildCommand must not be empty")
        if not self.install_command:
            raise ConfigError("installCommand must not be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BuildPlanConfig':
        """
        Create a plan from a parsed JSON document.

        Args:
            data: Plan document

        Returns:
            Validated BuildPlanConfig

        Raises:
            ConfigError: If the document is malformed
        """
        if not isinstance(data, dict):
            raise ConfigError("Build plan must be a JSON object")

        kwargs: Dict[str, Any] = {
            'nodes': [NodeConfig.from_dict(n) for n in data.get('nodes', [])]
        }

        build_command = _pick(data, 'buildCommand', 'build_command')
        if build_command is not None:
            args = _pick(data, 'buildArgs', 'build_args', [])
            kwargs['build_command'] = [str(a) for a in list(build_command) + list(args)]

        install_command = _pick(data, 'installCommand', 'install_command')
        if install_command is not None:
            kwargs['install_command'] = [str(a) for a in install_command]

        for camel, snake in (
            ('buildConfig', 'build_config'),
            ('archiveName', 'archive_name'),
            ('progressHost', 'progress_host'),
            ('progressPort', 'progress_port'),
            ('logLevel', 'log_level'),
        ):
            value = _pick(data, camel, snake)
            if value is not None:
                kwargs[snake] = value

        if 'progress_port' in kwargs:
            kwargs['progress_port'] = int(kwargs['progress_port'])

        verify = data.get('verify')
        if verify:
            kwargs['verify'] = VerifyConfig.from_dict(verify)

        config = cls(**kwargs)
        config.validate()
        return config

    @classmethod
    def from_json_file(cls, path: str) -> 'BuildPlanConfig':
        """
        Load plan from JSON file.

        Args:
            path: Path to JSON plan

        Returns:
            BuildPlanConfig instance

        Raises:
            ConfigError: If the file is missing or not valid JSON
        """
        if not os.path.exists(path):
            raise ConfigError(f"Build plan not found: {path}")
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Build plan {path} is not valid JSON: {e}")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (credentials masked)."""
        return {
            'nodes': [n.to_dict() for n in self.nodes],
            'build_command': self.build_command,
            'install_command': self.install_command,
            'build_config': self.build_config,
            'archive_name': self.archive_name,
            'progress_host': self.progress_host,
            'progress_port': self.progress_port,
            'verify': asdict(self.verify) if self.verify else None,
            'log_level': self.log_level
        }

    def __repr__(self) -> str:
        return (
            f"BuildPlanConfig(nodes={len(self.nodes)}, "
            f"build_command={self.build_command!r}, "
            f"progress_port={self.progress_port})"
        )
