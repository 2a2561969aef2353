#!/usr/bin/env python3
"""
conduitctl - security-hardened Psiphon Conduit manager
MIT License

Manages a single Docker container running the Psiphon Conduit proxy:
- deploys it with dropped capabilities, read-only rootfs, seccomp profile and resource caps
- shows a live dashboard scraped from `docker stats` and the container's [STATS] log lines
- backs up and restores the node identity key stored in the data volume
"""

import argparse
import base64
import binascii
import json
import logging
import os
import re
import select
import shutil
import subprocess
import sys
import tempfile
import termios
import time
import tty
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import psutil
import requests


VERSION = "1.3.0"

CONTAINER_NAME = "conduit-mac"
IMAGE = "ghcr.io/ssmirr/conduit/conduit:d8522a8"
IMAGE_DIGEST = "sha256:a7c3acdc9ff4b5a2077a983765f0ac905ad11571321c61715181b1cf616379ca"
VOLUME_NAME = "conduit-data"
NETWORK_NAME = "conduit-network"
HELPER_IMAGE = "alpine"
KEY_FILE_NAME = "conduit_key.json"
CONTAINER_DATA_DIR = "/home/conduit/data"
CONDUIT_OWNER = "1000:1000"  # conduit user inside the image

PROJECT_URL = "https://github.com/moghtaderi/conduit-manager-mac"
UPDATE_URL = "https://raw.githubusercontent.com/moghtaderi/conduit-manager-mac/main/conduitctl.py"

DEFAULT_MAX_MEMORY = "2g"
DEFAULT_MAX_CPUS = "2"
DEFAULT_BANDWIDTH = 5
PIDS_LIMIT = 100
TMPFS_SIZE = "100m"

MIN_CLIENTS = 1
MAX_CLIENTS_LIMIT = 2000
MIN_BANDWIDTH = 1
MAX_BANDWIDTH = 1000
UNLIMITED = -1

DASHBOARD_INTERVAL = 5.0
STATS_TAIL = 50
LOGS_TAIL = 100

logger = logging.getLogger("conduitctl")


# =============================================================================
# Error Registry
# =============================================================================

_errors: list[dict] = []


def log_error(category: str, message: str, context: dict | None = None) -> None:
    """Record a non-fatal error and write it to the log"""
    _errors.append({
        "ts": time.time(),
        "cat": category,
        "msg": message,
        "ctx": context or {},
    })
    logger.error(message)


def get_errors() -> list[dict]:
    """Get all recorded errors"""
    return _errors


def get_errors_by_category() -> dict[str, list[dict]]:
    """Get errors grouped by category"""
    grouped: dict[str, list[dict]] = {}
    for err in _errors:
        grouped.setdefault(err["cat"], []).append(err)
    return grouped


def clear_errors(category: str | None = None) -> int:
    """Clear errors in a category (all when None), returns count cleared"""
    global _errors
    before = len(_errors)
    if category is None:
        _errors = []
    else:
        _errors = [e for e in _errors if e["cat"] != category]
    return before - len(_errors)


# =============================================================================
# Logging
# =============================================================================

class ConsoleFormatter(logging.Formatter):
    """Coloured [WARN]/[ERROR] prefix for the console handler"""

    LABELS = {
        logging.DEBUG: ("DEBUG", "\033[90m"),
        logging.INFO: ("INFO", "\033[36m"),
        logging.WARNING: ("WARN", "\033[33m"),
        logging.ERROR: ("ERROR", "\033[31m"),
        logging.CRITICAL: ("ERROR", "\033[31m"),
    }

    def format(self, record: logging.LogRecord) -> str:
        label, color = self.LABELS.get(record.levelno, (record.levelname, ""))
        return f"{color}[{label}]\033[0m {record.getMessage()}"


def setup_logging(log_file: str | None, verbose: bool = False) -> None:
    """Log everything to the log file, warnings and errors to stderr"""
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(ConsoleFormatter())
    logger.addHandler(console)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Cannot open log file {log_file}: {e}")
            return
        file_handler.setFormatter(logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class Paths:
    """Local files owned by the manager"""
    config_file: str
    log_file: str
    backup_dir: str
    seccomp_file: str

    @classmethod
    def from_home(cls, home: str | None = None) -> "Paths":
        home = home or os.path.expanduser("~")
        return cls(
            config_file=os.path.join(home, ".conduit-config"),
            log_file=os.path.join(home, ".conduit-manager.log"),
            backup_dir=os.path.join(home, ".conduit-backups"),
            seccomp_file=os.path.join(home, ".conduit-seccomp.json"),
        )


_MEMORY_RE = re.compile(r"^[0-9]+[gGmM]$")
_CPUS_RE = re.compile(r"^[0-9]+\.?[0-9]*$")
_ASSIGNMENT_RE = re.compile(r'^([A-Z_]+)=(?:"([^"]*)"|(\S*))\s*$')


def is_valid_memory(value: str) -> bool:
    """Docker memory size like 512m or 2g"""
    return bool(_MEMORY_RE.match(value))


def is_valid_cpus(value: str) -> bool:
    """Positive integer or decimal core count like 2 or 1.5"""
    return bool(_CPUS_RE.match(value)) and float(value) > 0


@dataclass
class Config:
    """User settings persisted as shell-style assignments"""
    max_memory: str = DEFAULT_MAX_MEMORY
    max_cpus: str = DEFAULT_MAX_CPUS
    max_clients: int | None = None
    bandwidth: int | None = None

    @property
    def memory_swap(self) -> str:
        return self.max_memory

    @classmethod
    def load(cls, path: str) -> "Config":
        """Read the config file without executing it, keeping defaults for bad values"""
        config = cls()
        if not os.path.isfile(path):
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            log_error("config.read", str(e), {"path": path})
            return config

        for line in lines:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            match = _ASSIGNMENT_RE.match(line)
            if not match:
                logger.warning(f"Ignoring malformed config line: {line[:60]}")
                continue
            key = match.group(1)
            value = match.group(2) if match.group(2) is not None else match.group(3)
            if value:
                config._apply(key, value)
        return config

    def _apply(self, key: str, value: str) -> None:
        if key == "SAVED_MAX_MEMORY":
            if is_valid_memory(value):
                self.max_memory = value.lower()
            else:
                logger.warning(f"Ignoring invalid saved memory limit: {value}")
        elif key == "SAVED_MAX_CPUS":
            if is_valid_cpus(value):
                self.max_cpus = value
            else:
                logger.warning(f"Ignoring invalid saved CPU limit: {value}")
        elif key == "SAVED_MAX_CLIENTS":
            if validate_max_clients(value) is None:
                self.max_clients = int(value)
            else:
                logger.warning(f"Ignoring invalid saved max clients: {value}")
        elif key == "SAVED_BANDWIDTH":
            if validate_bandwidth(value) is None:
                self.bandwidth = int(value)
            else:
                logger.warning(f"Ignoring invalid saved bandwidth: {value}")
        else:
            logger.debug(f"Unknown config key {key}")

    def save(self, path: str) -> bool:
        """Overwrite the config file (mode 0600)"""
        lines = [
            "# Conduit Manager Configuration",
            f"# Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            "# Resource Limits",
            f'SAVED_MAX_MEMORY="{self.max_memory}"',
            f'SAVED_MAX_CPUS="{self.max_cpus}"',
        ]
        if self.max_clients is not None or self.bandwidth is not None:
            lines.append("")
            lines.append("# Deployment")
        if self.max_clients is not None:
            lines.append(f'SAVED_MAX_CLIENTS="{self.max_clients}"')
        if self.bandwidth is not None:
            lines.append(f'SAVED_BANDWIDTH="{self.bandwidth}"')
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
            os.chmod(path, 0o600)
        except OSError as e:
            log_error("config.write", str(e), {"path": path})
            return False
        return True


# =============================================================================
# Input Validation
# =============================================================================

def sanitize_input(raw: str) -> str:
    """Keep only digits and minus signs"""
    return "".join(c for c in raw if c in "0123456789-")


def validate_integer(value: str, minimum: int, maximum: int, field_name: str) -> str | None:
    """Return an error message, or None when value is an integer in range (or -1)"""
    if not re.fullmatch(r"-?[0-9]+", value):
        logger.error(f"{field_name} must be an integer, got: '{value}'")
        return f"{field_name} must be a valid integer."
    number = int(value)
    if number != UNLIMITED and not minimum <= number <= maximum:
        logger.error(f"{field_name} out of range: {number} (allowed: {minimum}-{maximum} or -1)")
        return f"{field_name} must be between {minimum} and {maximum} (or -1 for unlimited)."
    return None


def validate_max_clients(value: str) -> str | None:
    """Max clients must be an explicit number, never unlimited"""
    if value == str(UNLIMITED):
        logger.error("Max clients cannot be unlimited (-1)")
        return "Max clients cannot be unlimited. Please specify a number."
    return validate_integer(value, MIN_CLIENTS, MAX_CLIENTS_LIMIT, "Max Clients")


def validate_bandwidth(value: str) -> str | None:
    """Bandwidth in Mbps, -1 meaning unlimited"""
    if value == str(UNLIMITED):
        return None
    return validate_integer(value, MIN_BANDWIDTH, MAX_BANDWIDTH, "Bandwidth")


def recommended_clients(cores: int) -> int:
    """100 clients per core, at most 1000"""
    return min(max(cores, 1) * 100, 1000)


# =============================================================================
# Docker Data Models
# =============================================================================

VALID_ID_CHARS = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_"
VALID_IMAGE_REF_CHARS = VALID_ID_CHARS + "/:.@"  # registry.domain/repo:tag@sha256:...


def is_valid_id(id_str: str) -> bool:
    """Check if ID contains only valid characters (a-z, A-Z, 0-9, -, _)"""
    return bool(id_str) and all(c in VALID_ID_CHARS for c in id_str)


def is_valid_image_ref(ref_str: str) -> bool:
    """Check if image reference contains only valid characters (allows /, :, ., @)"""
    return bool(ref_str) and all(c in VALID_IMAGE_REF_CHARS for c in ref_str)


@dataclass
class Container:
    """Row of `docker ps --format '{{json .}}'`"""
    ID: str
    Names: str
    Image: str
    Status: str
    State: str = ""
    CreatedAt: str = ""
    RunningFor: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Container | None":
        """Create Container from dict, logging errors for missing required fields"""
        required = ["ID", "Names", "Image", "Status"]
        missing = [f for f in required if f not in data]
        if missing:
            log_error("docker.container_parse", f"Missing fields: {missing}", {"data": str(data)[:200]})
            return None
        if not is_valid_id(data["ID"]):
            log_error("docker.container_parse", f"Invalid ID: {data['ID']}", {"data": str(data)[:200]})
            return None
        try:
            return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        except TypeError as e:
            log_error("docker.container_parse", str(e), {"data": str(data)[:200]})
            return None

    @property
    def is_running(self) -> bool:
        if self.State:
            return self.State.lower() == "running"
        return self.Status.startswith("Up")


@dataclass
class ContainerStats:
    """Row of `docker stats --no-stream --format '{{json .}}'`"""
    CPUPerc: str
    MemUsage: str
    MemPerc: str = ""
    NetIO: str = ""
    BlockIO: str = ""
    PIDs: str = ""
    Name: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ContainerStats | None":
        required = ["CPUPerc", "MemUsage"]
        missing = [f for f in required if f not in data]
        if missing:
            log_error("docker.stats_parse", f"Missing fields: {missing}", {"data": str(data)[:200]})
            return None
        try:
            return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        except TypeError as e:
            log_error("docker.stats_parse", str(e), {"data": str(data)[:200]})
            return None


# =============================================================================
# Docker Backend
# =============================================================================

class Docker:
    """Docker CLI wrapper using subprocess"""

    @staticmethod
    def _run(
        args: list[str],
        capture: bool = True,
        merge_stderr: bool = False,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess:
        """Run docker command"""
        cmd = ["docker"] + args
        logger.debug(f"$ {' '.join(cmd)}")
        kwargs: dict = {"text": True}
        if merge_stderr:
            kwargs.update(stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
        elif capture:
            kwargs["capture_output"] = True
        if input_text is not None:
            kwargs["input"] = input_text
        try:
            return subprocess.run(cmd, **kwargs)
        except FileNotFoundError as e:
            log_error("docker.missing", "docker executable not found", {"error": str(e)})
            return subprocess.CompletedProcess(cmd, 127, "", str(e))

    @staticmethod
    def _check(args: list[str], category: str, **kwargs) -> bool:
        """Run docker command, recording stderr on failure"""
        result = Docker._run(args, **kwargs)
        if result.returncode != 0:
            log_error(category, f"docker {' '.join(args[:2])} failed", {
                "returncode": result.returncode,
                "stderr": result.stderr.strip() if result.stderr else "",
            })
            return False
        return True

    @staticmethod
    def _run_json(args: list[str]) -> list[dict]:
        """Run docker command and parse one JSON object per line"""
        result = Docker._run(args)
        if result.returncode != 0:
            log_error("docker.command", f"docker {' '.join(args)}", {
                "returncode": result.returncode,
                "stderr": result.stderr.strip() if result.stderr else "",
            })
            return []

        items = []
        for line in result.stdout.strip().split("\n"):
            if line:
                try:
                    items.append(json.loads(line))
                except json.JSONDecodeError as e:
                    log_error("docker.json_parse", str(e), {"line": line[:100]})
        return items

    @staticmethod
    def info() -> bool:
        """True when the daemon answers"""
        return Docker._run(["info"]).returncode == 0

    @staticmethod
    def containers(all_containers: bool = True, name: str | None = None) -> list[Container]:
        """List containers, optionally only the one named exactly name"""
        args = ["ps"]
        if all_containers:
            args.append("-a")
        if name:
            args.extend(["--filter", f"name=^{name}$"])
        args.extend(["--format", "{{json .}}"])
        raw = Docker._run_json(args)
        return [c for c in (Container.from_dict(r) for r in raw) if c is not None]

    @staticmethod
    def find_container(name: str) -> Container | None:
        """Container with exactly this name, running or not"""
        if not is_valid_id(name):
            log_error("docker.invalid_id", f"Invalid container name: {name}")
            return None
        for container in Docker.containers(all_containers=True, name=name):
            if name in container.Names.split(","):
                return container
        return None

    @staticmethod
    def start(container_id: str) -> bool:
        """Start a container"""
        if not is_valid_id(container_id):
            log_error("docker.invalid_id", f"Invalid container ID: {container_id}")
            return False
        return Docker._check(["start", container_id], "docker.start")

    @staticmethod
    def stop(container_id: str) -> bool:
        """Stop a container"""
        if not is_valid_id(container_id):
            log_error("docker.invalid_id", f"Invalid container ID: {container_id}")
            return False
        return Docker._check(["stop", container_id], "docker.stop")

    @staticmethod
    def restart(container_id: str) -> bool:
        """Restart a container"""
        if not is_valid_id(container_id):
            log_error("docker.invalid_id", f"Invalid container ID: {container_id}")
            return False
        return Docker._check(["restart", container_id], "docker.restart")

    @staticmethod
    def remove_container(container_id: str, force: bool = False) -> bool:
        """Remove a container"""
        if not is_valid_id(container_id):
            log_error("docker.invalid_id", f"Invalid container ID: {container_id}")
            return False
        args = ["rm", container_id]
        if force:
            args.insert(1, "-f")
        return Docker._check(args, "docker.rm")

    @staticmethod
    def run_detached(args: list[str]) -> bool:
        """docker run with a prepared argument list (must start with run -d)"""
        return Docker._check(args, "docker.run")

    @staticmethod
    def update_resources(container_id: str, memory: str, cpus: str) -> bool:
        """Apply new memory/cpu caps to an existing container"""
        if not is_valid_id(container_id):
            log_error("docker.invalid_id", f"Invalid container ID: {container_id}")
            return False
        return Docker._check(
            ["update", "--memory", memory, "--memory-swap", memory, "--cpus", cpus, container_id],
            "docker.update",
        )

    @staticmethod
    def pull(image: str) -> bool:
        """Pull an image"""
        if not is_valid_image_ref(image):
            log_error("docker.invalid_id", f"Invalid image ref: {image}")
            return False
        return Docker._check(["pull", image], "docker.pull")

    @staticmethod
    def image_digest(image: str) -> str | None:
        """sha256 digest from the image's first RepoDigest"""
        if not is_valid_image_ref(image):
            log_error("docker.invalid_id", f"Invalid image ref: {image}")
            return None
        result = Docker._run(["inspect", "--format", "{{index .RepoDigests 0}}", image])
        if result.returncode != 0:
            return None
        match = re.search(r"sha256:[a-f0-9]+", result.stdout)
        return match.group(0) if match else None

    @staticmethod
    def remove_image(image: str) -> bool:
        """Remove an image"""
        if not is_valid_image_ref(image):
            log_error("docker.invalid_id", f"Invalid image ref: {image}")
            return False
        return Docker._check(["rmi", image], "docker.rmi")

    @staticmethod
    def network_exists(name: str) -> bool:
        if not is_valid_id(name):
            log_error("docker.invalid_id", f"Invalid network name: {name}")
            return False
        return Docker._run(["network", "inspect", name]).returncode == 0

    @staticmethod
    def create_network(name: str) -> bool:
        """Create a bridge network"""
        if not is_valid_id(name):
            log_error("docker.invalid_id", f"Invalid network name: {name}")
            return False
        return Docker._check(["network", "create", "--driver", "bridge", name], "docker.network_create")

    @staticmethod
    def remove_network(name: str) -> bool:
        """Remove a network"""
        if not is_valid_id(name):
            log_error("docker.invalid_id", f"Invalid network name: {name}")
            return False
        return Docker._check(["network", "rm", name], "docker.network_rm")

    @staticmethod
    def volume_mountpoint(name: str) -> str | None:
        """Mountpoint of a volume, None when the volume does not exist"""
        if not is_valid_id(name):
            log_error("docker.invalid_id", f"Invalid volume name: {name}")
            return None
        result = Docker._run(["volume", "inspect", name, "--format", "{{ .Mountpoint }}"])
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    @staticmethod
    def remove_volume(name: str) -> bool:
        """Remove a volume"""
        if not is_valid_id(name):
            log_error("docker.invalid_id", f"Invalid volume name: {name}")
            return False
        return Docker._check(["volume", "rm", name], "docker.volume_rm")

    @staticmethod
    def run_helper(
        mounts: list[str], command: list[str], input_text: str | None = None
    ) -> subprocess.CompletedProcess:
        """Run a throwaway helper container with volume mounts (name:path)"""
        args = ["run", "--rm"]
        if input_text is not None:
            args.append("-i")
        for mount in mounts:
            args.extend(["-v", mount])
        args.append(HELPER_IMAGE)
        args.extend(command)
        return Docker._run(args, input_text=input_text)

    @staticmethod
    def logs(container_id: str, tail: int = STATS_TAIL) -> str:
        """Last lines of container output, stdout and stderr interleaved"""
        if not is_valid_id(container_id):
            log_error("docker.invalid_id", f"Invalid container ID: {container_id}")
            return ""
        result = Docker._run(["logs", "--tail", str(tail), container_id], merge_stderr=True)
        if result.returncode != 0:
            return ""
        return result.stdout or ""

    @staticmethod
    def stream_logs(container_id: str, follow: bool = True, tail: int | None = LOGS_TAIL) -> None:
        """Show container logs (streams to the terminal)"""
        if not is_valid_id(container_id):
            log_error("docker.invalid_id", f"Invalid container ID: {container_id}")
            return
        args = ["logs"]
        if follow:
            args.append("-f")
        if tail is not None:
            args.extend(["--tail", str(tail)])
        args.append(container_id)
        Docker._run(args, capture=False)

    @staticmethod
    def stats(container_id: str) -> ContainerStats | None:
        """One-shot resource usage of a running container"""
        if not is_valid_id(container_id):
            log_error("docker.invalid_id", f"Invalid container ID: {container_id}")
            return None
        raw = Docker._run_json(["stats", "--no-stream", "--format", "{{json .}}", container_id])
        if not raw:
            return None
        return ContainerStats.from_dict(raw[0])


# =============================================================================
# Stats Extraction
# =============================================================================

STATS_MARKER = "[STATS]"
_CONNECTED_RE = re.compile(r"Connected:\s*(\d+)")
_CONNECTING_RE = re.compile(r"Connecting:\s*(\d+)")
_UP_RE = re.compile(r"\bUp:\s*([^|]*)")
_DOWN_RE = re.compile(r"\bDown:\s*([^|]*)")


@dataclass
class ConduitStats:
    """Client and traffic counters reported by the conduit process"""
    connected: int = 0
    connecting: int = 0
    up: str = "0B"
    down: str = "0B"


def parse_stats_line(line: str) -> ConduitStats:
    """Extract counters from a [STATS] line, defaulting fields that are absent"""
    stats = ConduitStats()
    if match := _CONNECTED_RE.search(line):
        stats.connected = int(match.group(1))
    if match := _CONNECTING_RE.search(line):
        stats.connecting = int(match.group(1))
    if match := _UP_RE.search(line):
        stats.up = match.group(1).replace(" ", "") or stats.up
    if match := _DOWN_RE.search(line):
        stats.down = match.group(1).replace(" ", "") or stats.down
    return stats


def latest_stats(log_output: str) -> ConduitStats:
    """Stats from the most recent [STATS] line of a log excerpt"""
    for line in reversed(log_output.splitlines()):
        if STATS_MARKER in line:
            return parse_stats_line(line)
    return ConduitStats()


def format_bytes(num_bytes: int | None) -> str:
    """Binary units with two decimals (1536 -> 1.50 KB)"""
    if not num_bytes or num_bytes < 0:
        return "0 B"
    for threshold, unit in ((1 << 30, "GB"), (1 << 20, "MB"), (1 << 10, "KB")):
        if num_bytes >= threshold:
            return f"{num_bytes / threshold:.2f} {unit}"
    return f"{num_bytes} B"


@dataclass
class SystemStats:
    """Host usage next to the container's"""
    cpu_percent: float | None
    ram_used: int
    ram_total: int
    cores: int

    @classmethod
    def collect(cls) -> "SystemStats":
        mem = psutil.virtual_memory()
        return cls(
            cpu_percent=psutil.cpu_percent(interval=None),
            ram_used=mem.total - mem.available,
            ram_total=mem.total,
            cores=psutil.cpu_count() or 1,
        )


# =============================================================================
# Node Identity
# =============================================================================

def node_id_from_key(key_text: str) -> str | None:
    """Last 32 bytes of the decoded private key, base64 without padding"""
    try:
        data = json.loads(key_text)
        private_key = base64.b64decode(data["privateKeyBase64"], validate=True)
    except (json.JSONDecodeError, KeyError, TypeError, binascii.Error) as e:
        logger.warning(f"Cannot derive node ID from key: {e}")
        return None
    if len(private_key) < 32:
        logger.warning(f"Private key too short: {len(private_key)} bytes")
        return None
    return base64.b64encode(private_key[-32:]).decode("ascii").rstrip("=")


def read_node_key() -> str | None:
    """Raw key JSON from the data volume, None if the volume or key is missing"""
    mountpoint = Docker.volume_mountpoint(VOLUME_NAME)
    if mountpoint is None:
        return None
    if mountpoint:
        path = os.path.join(mountpoint, KEY_FILE_NAME)
        if os.path.isfile(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return f.read()
            except OSError as e:
                logger.debug(f"Cannot read {path} directly: {e}")
    # The mountpoint lives inside the Docker VM on macOS
    result = Docker.run_helper([f"{VOLUME_NAME}:/data"], ["cat", f"/data/{KEY_FILE_NAME}"])
    if result.returncode != 0 or not result.stdout.strip():
        return None
    return result.stdout


def get_node_id() -> str | None:
    key = read_node_key()
    return node_id_from_key(key) if key else None


# =============================================================================
# Key Backup / Restore
# =============================================================================

def backup_key(paths: Paths, now: datetime | None = None) -> str | None:
    """Copy the node key verbatim into a timestamped backup file"""
    key = read_node_key()
    if not key:
        log_error("backup.no_key", "No node key found to back up")
        return None
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    backup_file = os.path.join(paths.backup_dir, f"conduit_key_{stamp}.json")
    try:
        os.makedirs(paths.backup_dir, mode=0o700, exist_ok=True)
        fd = os.open(backup_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(key)
        os.chmod(backup_file, 0o600)
    except OSError as e:
        log_error("backup.write", str(e), {"path": backup_file})
        return None
    logger.info(f"Node key backed up to: {backup_file}")
    return backup_file


def list_backups(paths: Paths) -> list[str]:
    """Backup files, oldest first"""
    if not os.path.isdir(paths.backup_dir):
        return []
    return sorted(
        os.path.join(paths.backup_dir, name)
        for name in os.listdir(paths.backup_dir)
        if name.endswith(".json")
    )


def restore_key(backup_file: str) -> bool:
    """Replace the volume's key with a backup, restarting the container around it"""
    try:
        with open(backup_file, "r", encoding="utf-8") as f:
            key = f.read()
    except OSError as e:
        log_error("restore.read", str(e), {"path": backup_file})
        return False
    if node_id_from_key(key) is None:
        log_error("restore.invalid", f"Not a valid node key: {backup_file}")
        return False

    container = Docker.find_container(CONTAINER_NAME)
    if container is not None and container.is_running:
        Docker.stop(CONTAINER_NAME)
    target = f"/data/{KEY_FILE_NAME}"
    result = Docker.run_helper(
        [f"{VOLUME_NAME}:/data"],
        ["sh", "-c", f"cat > {target} && chmod 600 {target} && chown -R {CONDUIT_OWNER} /data"],
        input_text=key,
    )
    restored = result.returncode == 0
    if restored:
        logger.info(f"Node key restored from: {backup_file}")
    else:
        log_error("restore.copy", "Failed to copy key into volume", {
            "stderr": result.stderr.strip() if result.stderr else "",
        })
    if container is not None:
        Docker.start(CONTAINER_NAME)
    return restored


# =============================================================================
# Deployment
# =============================================================================

ACTION_INSTALL = "install"
ACTION_RESTART = "restart"
ACTION_START = "start"

SECCOMP_DENIED_SYSCALLS = [
    "acct", "add_key", "bpf", "clock_adjtime", "clock_settime", "create_module",
    "delete_module", "finit_module", "get_kernel_syms", "init_module", "ioperm",
    "iopl", "kcmp", "kexec_file_load", "kexec_load", "keyctl", "lookup_dcookie",
    "mount", "move_pages", "nfsservctl", "open_by_handle_at", "perf_event_open",
    "personality", "pivot_root", "process_vm_readv", "process_vm_writev", "ptrace",
    "query_module", "quotactl", "reboot", "request_key", "setns", "settimeofday",
    "swapoff", "swapon", "sysfs", "umount", "umount2", "unshare", "uselib",
    "userfaultfd", "ustat", "vm86", "vm86old",
]

SECCOMP_PROFILE = {
    "defaultAction": "SCMP_ACT_ALLOW",
    "architectures": ["SCMP_ARCH_X86_64", "SCMP_ARCH_X86", "SCMP_ARCH_AARCH64", "SCMP_ARCH_ARM"],
    "syscalls": [
        {"names": SECCOMP_DENIED_SYSCALLS, "action": "SCMP_ACT_ERRNO", "errnoRet": 1},
    ],
}


def decide_action(exists: bool, running: bool) -> str:
    """Fresh install, restart or start depending on what docker reports"""
    if not exists:
        return ACTION_INSTALL
    return ACTION_RESTART if running else ACTION_START


def build_run_args(config: Config, max_clients: int, bandwidth: int, seccomp_file: str) -> list[str]:
    """docker run arguments with the full hardening flag set"""
    return [
        "run", "-d",
        "--name", CONTAINER_NAME,
        "--restart", "unless-stopped",
        "--network", NETWORK_NAME,
        "--read-only",
        "--tmpfs", f"/tmp:rw,noexec,nosuid,size={TMPFS_SIZE}",
        "--security-opt", "no-new-privileges:true",
        "--security-opt", f"seccomp={seccomp_file}",
        "--cap-drop", "ALL",
        "--cap-add", "NET_BIND_SERVICE",
        "--memory", config.max_memory,
        "--cpus", config.max_cpus,
        "--memory-swap", config.memory_swap,
        "--pids-limit", str(PIDS_LIMIT),
        "-v", f"{VOLUME_NAME}:{CONTAINER_DATA_DIR}",
        IMAGE,
        "start", "--max-clients", str(max_clients), "--bandwidth", str(bandwidth), "-v",
    ]


def write_seccomp_profile(path: str) -> bool:
    """Write the static syscall filter referenced by docker run"""
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(SECCOMP_PROFILE, f, indent=2)
    except OSError as e:
        log_error("deploy.seccomp", str(e), {"path": path})
        return False
    return True


def ensure_network() -> bool:
    """Create the isolated bridge network if missing"""
    if Docker.network_exists(NETWORK_NAME):
        logger.info(f"Network '{NETWORK_NAME}' already exists")
        return True
    logger.info(f"Creating isolated bridge network: {NETWORK_NAME}")
    return Docker.create_network(NETWORK_NAME)


def verify_image_digest(confirm_mismatch: Callable[[str], bool]) -> bool:
    """Compare the pulled image digest; a missing digest only warns"""
    actual = Docker.image_digest(IMAGE)
    if not actual:
        logger.warning("Could not verify image digest (image may not have digest metadata)")
        return True
    if actual == IMAGE_DIGEST:
        logger.info(f"Image digest verified: {actual}")
        return True
    log_error("deploy.digest", "Image digest mismatch!", {"expected": IMAGE_DIGEST, "actual": actual})
    if confirm_mismatch(actual):
        logger.warning("User chose to continue despite digest mismatch")
        return True
    return False


def deploy(
    config: Config,
    max_clients: int,
    bandwidth: int,
    paths: Paths,
    confirm_mismatch: Callable[[str], bool],
    progress: Callable[[str], None] = lambda msg: None,
) -> bool:
    """Replace the container with a freshly pulled, hardened one"""
    logger.info(f"Installing container with max_clients={max_clients}, bandwidth={bandwidth}")

    progress("Preparing isolated network...")
    if not ensure_network():
        log_error("deploy.network", "Network setup failed, aborting installation")
        return False

    progress("Pulling container image...")
    if not Docker.pull(IMAGE):
        log_error("deploy.pull", f"Failed to pull image: {IMAGE}")
        return False

    progress("Verifying image digest...")
    if not verify_image_digest(confirm_mismatch):
        log_error("deploy.digest", "Image verification failed, aborting")
        return False

    if not write_seccomp_profile(paths.seccomp_file):
        return False

    if Docker.find_container(CONTAINER_NAME) is not None:
        logger.info(f"Removing existing container: {CONTAINER_NAME}")
        if not Docker.remove_container(CONTAINER_NAME, force=True):
            logger.warning("Failed to remove container (may not exist)")

    # Volumes are created root-owned, the conduit user needs to write its key
    progress("Setting up data volume permissions...")
    Docker.run_helper([f"{VOLUME_NAME}:{CONTAINER_DATA_DIR}"], ["chown", "-R", CONDUIT_OWNER, CONTAINER_DATA_DIR])

    progress("Starting container with security hardening...")
    if not Docker.run_detached(build_run_args(config, max_clients, bandwidth, paths.seccomp_file)):
        log_error("deploy.run", "Container deployment failed")
        return False

    logger.info("Container deployed successfully")
    config.max_clients = max_clients
    config.bandwidth = bandwidth
    config.save(paths.config_file)
    return True


def smart_start() -> str | None:
    """Restart a running container or start a stopped one.

    Returns the action taken on success, ACTION_INSTALL when there is nothing
    to start, or None when docker refused.
    """
    container = Docker.find_container(CONTAINER_NAME)
    action = decide_action(container is not None, container is not None and container.is_running)
    if action == ACTION_INSTALL:
        logger.info("Container not found, fresh installation needed")
        return action
    if action == ACTION_RESTART:
        logger.info("Restarting running container")
        ok = Docker.restart(CONTAINER_NAME)
    else:
        logger.info("Starting stopped container")
        ok = Docker.start(CONTAINER_NAME)
    if not ok:
        return None
    logger.info(f"Container {action}ed successfully")
    return action


def stop_service() -> bool | None:
    """Stop the container; None when it was not running"""
    container = Docker.find_container(CONTAINER_NAME)
    if container is None or not container.is_running:
        logger.warning("Stop requested but container is not running")
        return None
    if Docker.stop(CONTAINER_NAME):
        logger.info("Container stopped successfully")
        return True
    return False


def apply_resources(config: Config) -> bool | None:
    """Push the configured limits to an existing container; None if there is none"""
    if Docker.find_container(CONTAINER_NAME) is None:
        return None
    return Docker.update_resources(CONTAINER_NAME, config.max_memory, config.max_cpus)


def uninstall(paths: Paths, delete_backups: bool = False) -> None:
    """Remove everything the manager created; failures are logged and skipped"""
    logger.info(f"Uninstall initiated by user (delete_backups={delete_backups})")
    if Docker.find_container(CONTAINER_NAME) is not None:
        Docker.stop(CONTAINER_NAME)
        Docker.remove_container(CONTAINER_NAME, force=True)
    if Docker.volume_mountpoint(VOLUME_NAME) is not None:
        Docker.remove_volume(VOLUME_NAME)
    if Docker.network_exists(NETWORK_NAME):
        Docker.remove_network(NETWORK_NAME)
    Docker.remove_image(IMAGE)

    for path in (paths.config_file, paths.seccomp_file, paths.log_file):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log_error("uninstall.file", str(e), {"path": path})
    if delete_backups and os.path.isdir(paths.backup_dir):
        shutil.rmtree(paths.backup_dir, ignore_errors=True)


# =============================================================================
# Self-Update
# =============================================================================

_VERSION_RE = re.compile(r'^VERSION = "([^"]+)"', re.MULTILINE)


def fetch_remote_script(url: str = UPDATE_URL, timeout: float = 10) -> str | None:
    """Download the published script, None on any network error"""
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        log_error("update.fetch", str(e), {"url": url})
        return None
    return response.text


def parse_version(script_text: str) -> str | None:
    match = _VERSION_RE.search(script_text)
    return match.group(1) if match else None


def version_tuple(version: str) -> tuple[int, ...]:
    parts = []
    for piece in version.split("."):
        digits = re.match(r"\d+", piece)
        parts.append(int(digits.group(0)) if digits else 0)
    return tuple(parts)


def is_newer(remote: str, local: str = VERSION) -> bool:
    return version_tuple(remote) > version_tuple(local)


def install_update(script_text: str, target: str) -> bool:
    """Atomically replace target with a verified script"""
    if not script_text.startswith("#!/usr/bin/env python3"):
        log_error("update.verify", "Downloaded file is not a valid script")
        return False
    try:
        compile(script_text, target, "exec")
    except SyntaxError as e:
        log_error("update.verify", f"Downloaded script has syntax errors: {e}")
        return False

    directory = os.path.dirname(os.path.abspath(target))
    fd, tmp_path = tempfile.mkstemp(prefix=".conduitctl-update.", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(script_text)
        os.chmod(tmp_path, 0o755)
        os.replace(tmp_path, target)
    except OSError as e:
        log_error("update.install", f"Could not replace script: {e}", {"target": target})
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        return False
    return True


# =============================================================================
# Terminal Primitives
# =============================================================================

class Term:
    """ANSI escape code utilities for terminal manipulation"""

    CLEAR = "\033[2J\033[3J\033[H"  # screen and scrollback
    HOME = "\033[H"
    CLEAR_EOL = "\033[K"
    CLEAR_BELOW = "\033[J"
    RESET = "\033[0m"
    BOLD = "\033[1m"
    HIDE_CURSOR = "\033[?25l"
    SHOW_CURSOR = "\033[?25h"
    ALT_SCREEN = "\033[?1049h"
    MAIN_SCREEN = "\033[?1049l"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"

    KEY_ESC = "\x1b"

    @staticmethod
    def getch(timeout: float | None = None) -> str | None:
        """Read single keypress in raw mode, None if timeout expires first"""
        if not sys.stdin.isatty():
            if timeout is not None and not select.select([sys.stdin], [], [], timeout)[0]:
                return None
            return sys.stdin.readline()[:1] or Term.KEY_ESC
        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
        try:
            tty.setraw(fd)
            if timeout is not None and not select.select([sys.stdin], [], [], timeout)[0]:
                return None
            ch = sys.stdin.read(1)
            # Swallow the rest of escape sequences (arrow keys)
            if ch == "\x1b" and select.select([sys.stdin], [], [], 0.1)[0]:
                ch += sys.stdin.read(1)
                if ch[-1] == "[" and select.select([sys.stdin], [], [], 0.1)[0]:
                    ch += sys.stdin.read(1)
            return ch
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)

    @staticmethod
    def style(text: str, *styles: str) -> str:
        """Apply styles to text"""
        return "".join(styles) + text + Term.RESET


class Screen:
    """Buffered screen rendering - builds frame in memory, flushes once"""

    def __init__(self):
        self.buf: list[str] = []

    def clear(self) -> None:
        """Reset buffer"""
        self.buf = []

    def move(self, row: int, col: int) -> None:
        """Add cursor move to buffer"""
        self.buf.append(f"\033[{row};{col}H")

    def write(self, text: str) -> None:
        """Add text to buffer"""
        self.buf.append(text)

    def writeln(self, row: int, col: int, text: str) -> None:
        """Add positioned text to buffer, erasing what was left on that line"""
        self.move(row, col)
        self.write(text + Term.CLEAR_EOL)

    def flush(self) -> None:
        """Write entire buffer to stdout at once"""
        sys.stdout.write("".join(self.buf))
        sys.stdout.flush()
        self.buf = []


BANNER = [
    "  ██████╗ ██████╗ ███╗   ██╗██████╗ ██╗   ██╗██╗████████╗",
    " ██╔════╝██╔═══██╗████╗  ██║██╔══██╗██║   ██║██║╚══██╔══╝",
    " ██║     ██║   ██║██╔██╗ ██║██║  ██║██║   ██║██║   ██║   ",
    " ██║     ██║   ██║██║╚██╗██║██║  ██║██║   ██║██║   ██║   ",
    " ╚██████╗╚██████╔╝██║ ╚████║██████╔╝╚██████╔╝██║   ██║   ",
    "  ╚═════╝ ╚═════╝ ╚═╝  ╚═══╝╚═════╝  ╚═════╝ ╚═╝   ╚═╝   ",
]

RULE = "═" * 54
THIN_RULE = "─" * 54


class UI:
    """Prompt and banner helpers for the menu screens"""

    @staticmethod
    def header_lines() -> list[str]:
        lines = [Term.style(line, Term.CYAN) for line in BANNER]
        lines.append(Term.style(f"      Security-Hardened Edition v{VERSION}", Term.YELLOW))
        lines.append("")
        lines.append(f"{Term.style('[SECURE]', Term.GREEN)} Container isolation: ENABLED")
        lines.append("")
        return lines

    @staticmethod
    def header() -> None:
        """Clear screen and scrollback, then print the banner"""
        sys.stdout.write(Term.CLEAR)
        print("\n".join(UI.header_lines()))

    @staticmethod
    def title(text: str) -> None:
        print(Term.style(text, Term.BOLD))
        print(RULE)

    @staticmethod
    def ok(text: str) -> None:
        print(Term.style(f"✔ {text}", Term.GREEN))

    @staticmethod
    def fail(text: str) -> None:
        print(Term.style(f"✘ {text}", Term.RED))

    @staticmethod
    def warn(text: str) -> None:
        print(Term.style(text, Term.YELLOW))

    @staticmethod
    def ask(prompt: str) -> str:
        """Line input; EOF reads as empty"""
        try:
            return input(prompt).strip()
        except EOFError:
            return ""

    @staticmethod
    def confirm(prompt: str) -> bool:
        """Single-key y/N prompt"""
        sys.stdout.write(Term.style(f"{prompt} [y/N] ", Term.YELLOW))
        sys.stdout.flush()
        key = Term.getch() or ""
        print()
        return key.lower() == "y"

    @staticmethod
    def pause(prompt: str = "Press any key to return...") -> None:
        sys.stdout.write(prompt)
        sys.stdout.flush()
        Term.getch()
        print()


# =============================================================================
# Dashboard
# =============================================================================

@dataclass
class DashboardSnapshot:
    """Everything one dashboard frame shows"""
    running: bool
    uptime: str = ""
    node_id: str | None = None
    conduit: ConduitStats = field(default_factory=ConduitStats)
    container: ContainerStats | None = None
    system: SystemStats | None = None


def collect_snapshot(node_id: str | None = None) -> DashboardSnapshot:
    """Poll docker once; each call finishes before the next starts"""
    container = Docker.find_container(CONTAINER_NAME)
    if container is None or not container.is_running:
        return DashboardSnapshot(running=False)
    return DashboardSnapshot(
        running=True,
        uptime=container.Status,
        node_id=node_id,
        conduit=latest_stats(Docker.logs(CONTAINER_NAME, tail=STATS_TAIL)),
        container=Docker.stats(CONTAINER_NAME),
        system=SystemStats.collect(),
    )


def dashboard_lines(snap: DashboardSnapshot) -> list[str]:
    """Text rows of one dashboard frame"""
    lines = [
        f"{Term.style('LIVE DASHBOARD', Term.BOLD)} (Press {Term.style('any key', Term.YELLOW)} to Exit)",
        RULE,
    ]
    if not snap.running:
        lines += [
            f" STATUS:      {Term.style('● OFFLINE', Term.RED)}",
            THIN_RULE,
            " Service is not running.",
            " Press 1 from main menu to Start.",
            RULE,
        ]
        return lines

    cpu = snap.container.CPUPerc if snap.container else "N/A"
    ram = snap.container.MemUsage if snap.container else "N/A"
    sys_cpu, sys_ram = "N/A", "N/A"
    if snap.system:
        if snap.system.cpu_percent is not None:
            sys_cpu = f"{snap.system.cpu_percent:.1f}%"
        sys_ram = f"{format_bytes(snap.system.ram_used)} / {format_bytes(snap.system.ram_total)}"
    c = snap.conduit

    lines += [
        f" STATUS:      {Term.style('● ONLINE', Term.GREEN)}",
        f" UPTIME:      {snap.uptime or 'Unknown'}",
    ]
    if snap.node_id:
        lines.append(f" NODE ID:     {Term.style(snap.node_id, Term.CYAN)}")
    lines += [
        THIN_RULE,
        f" {Term.style('CLIENTS', Term.BOLD)}",
        f"   Connected:  {Term.style(str(c.connected), Term.GREEN)}      | Connecting: {Term.style(str(c.connecting), Term.YELLOW)}",
        THIN_RULE,
        f" {Term.style('TRAFFIC', Term.BOLD)}",
        f"   Upload:     {Term.style(c.up, Term.CYAN)}    | Download: {Term.style(c.down, Term.CYAN)}",
        THIN_RULE,
        f" {Term.style('RESOURCES', Term.BOLD)}           Container         System",
        f"   CPU:        {Term.style(cpu.ljust(16), Term.YELLOW)}  {Term.style(sys_cpu, Term.YELLOW)}",
        f"   RAM:        {Term.style(ram.ljust(16), Term.YELLOW)}  {Term.style(sys_ram, Term.YELLOW)}",
        RULE,
        f"{Term.style('[SECURE]', Term.GREEN)} Network isolated | Privileges dropped",
        Term.style(f"Refreshing every {DASHBOARD_INTERVAL:g} seconds...", Term.YELLOW),
    ]
    return lines


class Dashboard:
    """Full-screen polling view, exits on any key or Ctrl+C"""

    def __init__(self, interval: float = DASHBOARD_INTERVAL):
        self.interval = interval
        self.scr = Screen()
        self.node_id: str | None = None
        psutil.cpu_percent(interval=None)  # first reading is meaningless

    def refresh(self) -> DashboardSnapshot:
        snap = collect_snapshot(self.node_id)
        # The key never changes while running, look it up until found
        if snap.running and self.node_id is None:
            self.node_id = snap.node_id = get_node_id()
        return snap

    def render(self, snap: DashboardSnapshot) -> None:
        scr = self.scr
        scr.clear()
        scr.write(Term.HOME)
        for row, line in enumerate(UI.header_lines() + dashboard_lines(snap), start=1):
            scr.writeln(row, 1, line)
        scr.write(Term.CLEAR_BELOW)
        scr.flush()

    def run(self) -> None:
        logger.info("Dashboard view started")
        sys.stdout.write(Term.ALT_SCREEN + Term.HIDE_CURSOR + Term.CLEAR)
        sys.stdout.flush()
        try:
            while True:
                self.render(self.refresh())
                if Term.getch(timeout=self.interval) is not None:
                    break
        except KeyboardInterrupt:
            pass
        finally:
            sys.stdout.write(Term.SHOW_CURSOR + Term.MAIN_SCREEN)
            sys.stdout.flush()
            logger.info("Dashboard view ended")


# =============================================================================
# Application
# =============================================================================

def check_docker() -> bool:
    """Print help and return False when the daemon is unreachable"""
    logger.info("Checking Docker availability...")
    if Docker.info():
        logger.info("Docker is available and running")
        return True
    log_error("docker.unavailable", "Docker is not running or not accessible")
    print(Term.style("[ERROR] Docker is NOT running!", Term.RED))
    print()
    print("Please ensure Docker Desktop is installed and running:")
    print("  1. Open Docker Desktop from Applications")
    print("  2. Wait for it to fully start (whale icon stops animating)")
    print("  3. Run this command again")
    print()
    return False


def prompt_validated(prompt: str, default: int, validate: Callable[[str], str | None]) -> int:
    """Re-prompt until validate accepts the sanitized input"""
    while True:
        raw = UI.ask(prompt) or str(default)
        value = sanitize_input(raw)
        error = validate(value)
        if error is None:
            return int(value)
        print(Term.style(f"Error: {error}", Term.RED))
        print("Please enter a valid number.")


class Manager:
    """Interactive main menu"""

    def __init__(self, paths: Paths, config: Config):
        self.paths = paths
        self.config = config
        self.running = True
        self.actions: dict[str, Callable[[], None]] = {
            "1": self.smart_start,
            "2": self.stop,
            "3": self.dashboard,
            "4": self.logs,
            "5": self.reconfigure,
            "6": self.resources,
            "7": self.security_info,
            "8": self.node_info,
            "b": self.backup,
            "r": self.restore,
            "u": self.check_updates,
            "x": self.uninstall,
            "0": self.quit,
        }

    def menu(self) -> None:
        UI.header()
        print(Term.style("MAIN MENU", Term.BOLD))
        print()
        print(f" {Term.style('Service', Term.BOLD)}")
        print("   1. ▶  Start / Restart (Smart)")
        print("   2. ⏹  Stop Service")
        print("   3. 📊 Live Dashboard")
        print("   4. 📜 View Logs")
        print()
        print(f" {Term.style('Configuration', Term.BOLD)}")
        print("   5. ⚙  Reconfigure (Re-install)")
        print("   6. 📈 Resource Limits (CPU/RAM)")
        print("   7. 🔒 Security Settings")
        print("   8. 🆔 Node Identity")
        print()
        print(f" {Term.style('Backup & Maintenance', Term.BOLD)}")
        print("   b. 💾 Backup Key")
        print("   r. 📥 Restore Key")
        print("   u. 🔄 Check for Updates")
        print("   x. 🗑  Uninstall")
        print()
        print("   0. 🚪 Exit")
        print()

    def handle(self, option: str) -> None:
        action = self.actions.get(option.lower())
        if action is None:
            logger.warning(f"Invalid menu option selected: {option}")
            print(Term.style("Invalid option.", Term.RED))
            time.sleep(1)
            return
        action()

    def run(self) -> None:
        logger.info(f"=== Conduit Manager v{VERSION} session started ===")
        while self.running:
            self.menu()
            try:
                self.handle(UI.ask(" Select option: "))
            except KeyboardInterrupt:
                print()
                self.quit()

    def quit(self) -> None:
        logger.info("=== Conduit Manager session ended ===")
        print(Term.style("Goodbye!", Term.CYAN))
        self.running = False

    # -- service --------------------------------------------------------------

    def smart_start(self) -> None:
        UI.header()
        logger.info("Smart start initiated")
        container = Docker.find_container(CONTAINER_NAME)
        if container is None:
            print(Term.style("▶ FIRST TIME SETUP", Term.BLUE))
            print("-----------------------------------")
            self.install()
            return
        if container.is_running:
            print(Term.style("Status: Running", Term.YELLOW))
            print(Term.style("Action: Restarting Service...", Term.BLUE))
        else:
            print(Term.style("Status: Stopped", Term.RED))
            print(Term.style("Action: Starting Service...", Term.BLUE))
        action = smart_start()
        if action == ACTION_RESTART:
            UI.ok("Service Restarted Successfully.")
        elif action == ACTION_START:
            UI.ok("Service Started Successfully.")
        else:
            UI.fail("Failed to start service.")
        time.sleep(2)

    def install(self) -> None:
        cores = psutil.cpu_count() or 1
        recommended = recommended_clients(cores)
        default_clients = self.config.max_clients or recommended
        default_bandwidth = self.config.bandwidth if self.config.bandwidth is not None else DEFAULT_BANDWIDTH

        print()
        UI.title("System Information:")
        print(f"  CPU Cores:    {Term.style(str(cores), Term.GREEN)}")
        print(f"  RAM:          {Term.style(format_bytes(psutil.virtual_memory().total), Term.GREEN)}")
        print(f"  Recommended:  {Term.style(f'{recommended} max-clients', Term.GREEN)}")
        print(RULE)
        print()
        self.print_security_notice()

        max_clients = prompt_validated(
            f"Maximum Clients [{MIN_CLIENTS}-{MAX_CLIENTS_LIMIT}, Default: {default_clients}]: ",
            default_clients,
            validate_max_clients,
        )
        bandwidth = prompt_validated(
            f"Bandwidth Limit in Mbps [{MIN_BANDWIDTH}-{MAX_BANDWIDTH}, -1=Unlimited, Default: {default_bandwidth}]: ",
            default_bandwidth,
            validate_bandwidth,
        )

        print()
        print(Term.style("Deploying secure container...", Term.YELLOW))
        ok = deploy(
            self.config, max_clients, bandwidth, self.paths,
            confirm_mismatch=self.confirm_digest_mismatch,
            progress=lambda msg: print(Term.style(msg, Term.BLUE)),
        )
        if not ok:
            UI.fail("Installation Failed.")
            print()
            print("Possible causes:")
            print("  - Docker may need more permissions")
            print("  - No internet connection while pulling the image")
            print("  - Insufficient system resources")
            print()
            print(f"Check logs at: {self.paths.log_file}")
            UI.pause("Press any key to continue...")
            return

        print()
        UI.ok("Installation Complete & Started!")
        print()
        time.sleep(2)  # give the container time to generate its key
        node_id = get_node_id()
        if node_id:
            print(f"{Term.style('Node ID:', Term.BOLD)} {Term.style(node_id, Term.CYAN)}")
            print()
        print(Term.style("Container Security Summary:", Term.BOLD))
        print("  - Isolated network (cannot access host network)")
        print("  - Read-only filesystem (tamper-resistant)")
        print("  - Seccomp syscall filter applied")
        print("  - Resource limits enforced (CPU/RAM capped)")
        print("  - Privilege escalation blocked")
        print("  - Image digest verified")
        print()
        UI.pause()

    @staticmethod
    def confirm_digest_mismatch(actual: str) -> bool:
        UI.fail("WARNING: Image digest does not match expected value!")
        print(f"  Expected: {IMAGE_DIGEST}")
        print(f"  Got:      {actual}")
        UI.warn("This could indicate a compromised or updated image.")
        print()
        return UI.confirm("Continue anyway?")

    def print_security_notice(self) -> None:
        UI.title("Security Settings:")
        print(f" Network:     {Term.style('Isolated bridge', Term.GREEN)} (no host access)")
        print(f" Filesystem:  {Term.style('Read-only', Term.GREEN)} (tmpfs for /tmp)")
        print(f" Privileges:  {Term.style('Dropped', Term.GREEN)} (no-new-privileges, seccomp)")
        print(f" Resources:   {Term.style('Limited', Term.GREEN)} ({self.config.max_memory} RAM, {self.config.max_cpus} CPUs)")
        print(f" Image:       {Term.style('Digest verified', Term.GREEN)}")
        print(RULE)
        print()

    def stop(self) -> None:
        logger.info("Stop service requested")
        print(Term.style("Stopping Conduit...", Term.YELLOW))
        result = stop_service()
        if result is None:
            UI.warn("Service is not currently running.")
        elif result:
            UI.ok("Service stopped.")
        else:
            UI.fail("Failed to stop service.")
        time.sleep(1)

    def dashboard(self) -> None:
        Dashboard().run()

    def logs(self) -> None:
        logger.info("Log view started")
        sys.stdout.write(Term.CLEAR)
        print(Term.style("Streaming Logs (Press Ctrl+C to Exit)...", Term.CYAN))
        print("------------------------------------------------")
        print()
        container = Docker.find_container(CONTAINER_NAME)
        if container is None or not container.is_running:
            UI.warn("Container is not running.")
            print("Start the container first to view logs.")
        else:
            try:
                Docker.stream_logs(CONTAINER_NAME, follow=True, tail=LOGS_TAIL)
            except KeyboardInterrupt:
                print()
                print()
                print(Term.style("Log streaming stopped.", Term.CYAN))
        print()
        UI.pause()
        logger.info("Log view ended")

    # -- configuration --------------------------------------------------------

    def reconfigure(self) -> None:
        UI.header()
        print(Term.style("▶ RECONFIGURATION", Term.BLUE))
        self.install()

    def resources(self) -> None:
        UI.header()
        UI.title("RESOURCE LIMITS")
        print()
        print(Term.style("System Resources:", Term.BOLD))
        print(f"  Total CPU Cores: {psutil.cpu_count() or '?'}")
        print(f"  Total RAM:       {format_bytes(psutil.virtual_memory().total)}")
        print()
        print(Term.style("Current Limits:", Term.BOLD))
        print(f"  Memory Limit:    {self.config.max_memory}")
        print(f"  CPU Limit:       {self.config.max_cpus} cores")
        print()
        print(RULE)
        print()

        print(Term.style("Set Memory Limit", Term.BOLD))
        print("  Examples: 1g, 2g, 4g, 512m")
        print(f"  Current:  {self.config.max_memory}")
        new_memory = UI.ask("  New value (or Enter to keep current): ")
        if new_memory:
            if is_valid_memory(new_memory):
                self.config.max_memory = new_memory.lower()
                UI.ok(f"Memory limit set to {self.config.max_memory}")
            else:
                print(Term.style("  Invalid format. Use format like: 2g or 512m", Term.RED))
        print()

        print(Term.style("Set CPU Limit", Term.BOLD))
        print("  Enter number of CPU cores (can be decimal, e.g., 1.5)")
        print(f"  Current:  {self.config.max_cpus}")
        new_cpus = UI.ask("  New value (or Enter to keep current): ")
        if new_cpus:
            if is_valid_cpus(new_cpus):
                self.config.max_cpus = new_cpus
                UI.ok(f"CPU limit set to {self.config.max_cpus} cores")
            else:
                print(Term.style("  Invalid format. Use a number like: 2 or 1.5", Term.RED))
        print()

        if self.config.save(self.paths.config_file):
            logger.info(f"Resource limits updated: memory={self.config.max_memory}, cpus={self.config.max_cpus}")
            print(RULE)
            UI.ok("Configuration saved")
        else:
            UI.fail("Could not save configuration.")

        applied = apply_resources(self.config)
        if applied:
            UI.ok("New limits applied to the running container")
        elif applied is False:
            UI.fail("Could not apply limits to the container; use option 5 to re-install.")
        print()
        UI.pause()

    def security_info(self) -> None:
        UI.header()
        UI.title("SECURITY CONFIGURATION")
        print()
        print(Term.style("Image Verification:", Term.BOLD))
        print("  Docker images are verified using SHA256 digest.")
        print(f"  Expected: {IMAGE_DIGEST[:20]}...")
        print()
        print(Term.style("Network Isolation:", Term.BOLD))
        print("  The container runs on an isolated bridge network.")
        print("  It CANNOT access the host network stack directly.")
        print("  It CAN reach the internet (required for proxy function).")
        print()
        print(Term.style("Filesystem Protection:", Term.BOLD))
        print("  Container filesystem is READ-ONLY.")
        print("  Only /tmp is writable (in-memory tmpfs).")
        print("  Data volume is mounted for persistent state.")
        print()
        print(Term.style("Privilege Restrictions:", Term.BOLD))
        print("  ALL Linux capabilities are dropped except NET_BIND_SERVICE.")
        print("  no-new-privileges security option is enabled.")
        print(f"  Seccomp profile: {self.paths.seccomp_file}")
        print()
        print(Term.style("Resource Limits:", Term.BOLD))
        print(f"  Memory:     {self.config.max_memory} maximum")
        print(f"  CPU:        {self.config.max_cpus} cores maximum")
        print(f"  Processes:  {PIDS_LIMIT} maximum (prevents fork bombs)")
        print()
        print(Term.style("Log File:", Term.BOLD))
        print(f"  {self.paths.log_file}")
        print()
        print(RULE)
        UI.pause()

    def node_info(self) -> None:
        UI.header()
        UI.title("NODE IDENTITY")
        print()
        node_id = get_node_id()
        if node_id:
            print(f"  Node ID: {Term.style(node_id, Term.CYAN)}")
            print()
            print("  This ID uniquely identifies your node on the Psiphon network.")
            print("  It is derived from your private key stored in the Docker volume.")
            print()
            print(f"  {Term.style('Tip:', Term.YELLOW)} Use 'Backup Key' to save your identity for recovery.")
        else:
            UI.warn("  No node ID found.")
            print()
            print("  The node identity is created when Conduit first starts.")
            print("  Start the service to generate a new node identity.")
        print()
        print(RULE)
        UI.pause()

    # -- backup & maintenance -------------------------------------------------

    def backup(self) -> None:
        UI.header()
        print(Term.style("═══ BACKUP CONDUIT NODE KEY ═══", Term.CYAN))
        print()
        if Docker.volume_mountpoint(VOLUME_NAME) is None:
            print(Term.style(f"Error: Could not find {VOLUME_NAME} volume", Term.RED))
            print("Has Conduit been started at least once?")
            UI.pause()
            return
        backup_file = backup_key(self.paths)
        if backup_file is None:
            print(Term.style("Error: No node key found. Has Conduit been started at least once?", Term.RED))
            UI.pause()
            return
        with open(backup_file, "r", encoding="utf-8") as f:
            node_id = node_id_from_key(f.read())

        UI.ok("Backup created successfully")
        print()
        print(f"  Backup file: {Term.style(backup_file, Term.CYAN)}")
        print(f"  Node ID:     {Term.style(node_id or 'unknown', Term.CYAN)}")
        print()
        print(f"{Term.style('Important:', Term.YELLOW)} Store this backup securely. It contains your node's")
        print("private key which identifies your node on the Psiphon network.")
        print()
        print("All backups:")
        for path in list_backups(self.paths):
            print(f"  {path} ({os.path.getsize(path)} bytes)")
        print()
        UI.pause()

    def restore(self) -> None:
        UI.header()
        print(Term.style("═══ RESTORE CONDUIT NODE KEY ═══", Term.CYAN))
        print()
        backups = list_backups(self.paths)
        if not backups:
            UI.warn(f"No backups found in {self.paths.backup_dir}")
            print()
            print("To restore from a custom path, provide the file path:")
            backup_file = os.path.expanduser(UI.ask("  Backup file path (or press Enter to cancel): "))
            if not backup_file:
                print("Restore cancelled.")
                UI.pause()
                return
            if not os.path.isfile(backup_file):
                print(Term.style(f"Error: File not found: {backup_file}", Term.RED))
                UI.pause()
                return
        else:
            print("Available backups:")
            for i, path in enumerate(backups, start=1):
                with open(path, "r", encoding="utf-8") as f:
                    node_id = node_id_from_key(f.read())
                print(f"  {i}. {os.path.basename(path)} - Node: {node_id or 'unknown'}")
            print()
            selection = UI.ask("  Select backup number (or 0 to cancel): ")
            if selection in ("", "0"):
                print("Restore cancelled.")
                UI.pause()
                return
            if not selection.isdigit() or not 1 <= int(selection) <= len(backups):
                print(Term.style("Invalid selection", Term.RED))
                UI.pause()
                return
            backup_file = backups[int(selection) - 1]

        print()
        print(f"{Term.style('Warning:', Term.YELLOW)} This will replace the current node key.")
        print("The container will be stopped and restarted.")
        print()
        if not UI.confirm("Proceed with restore?"):
            print("Restore cancelled.")
            UI.pause()
            return

        print()
        print("Restoring key...")
        if restore_key(backup_file):
            with open(backup_file, "r", encoding="utf-8") as f:
                node_id = node_id_from_key(f.read())
            print()
            UI.ok("Node key restored successfully")
            print(f"  Node ID: {Term.style(node_id or 'unknown', Term.CYAN)}")
        else:
            UI.fail("Restore failed.")
            print(f"Check logs at: {self.paths.log_file}")
        print()
        UI.pause()

    def check_updates(self) -> None:
        UI.header()
        UI.title("CHECK FOR UPDATES")
        print()
        print(f"Current version: {Term.style(VERSION, Term.CYAN)}")
        print()
        print("Checking for updates...")
        print()

        script = fetch_remote_script()
        remote = parse_version(script) if script else None
        if not remote:
            UI.warn("Could not check for updates.")
            print("Check your internet connection or visit:")
            print(f"  {PROJECT_URL}")
            print()
            print(RULE)
            UI.pause()
            return
        if not is_newer(remote):
            UI.ok("You are running the latest version.")
            print()
            print(RULE)
            UI.pause()
            return

        UI.warn(RULE)
        UI.warn(f"  NEW VERSION AVAILABLE: {remote}")
        UI.warn(RULE)
        print()
        print(f"Current: {Term.style(VERSION, Term.RED)}  →  Latest: {Term.style(remote, Term.GREEN)}")
        print()
        if not UI.confirm("Do you want to automatically update now?"):
            print()
            print("Update cancelled. To manually update later, run:")
            print(f"  {Term.style(f'curl -L -o conduitctl.py {UPDATE_URL} && chmod +x conduitctl.py', Term.CYAN)}")
            print()
            UI.pause()
            return

        target = os.path.abspath(__file__)
        logger.info(f"Auto-update initiated: {VERSION} -> {remote}")
        if not install_update(script, target):
            UI.fail("Update failed.")
            UI.pause()
            return
        logger.info(f"Auto-update completed: {VERSION} -> {remote}")
        UI.ok("Update installed successfully!")
        print()
        print("Restarting with new version...")
        os.execv(sys.executable, [sys.executable, target])

    def uninstall(self) -> None:
        UI.header()
        print(Term.style("═══ UNINSTALL CONDUIT ═══", Term.RED))
        print()
        UI.warn("WARNING: This will remove:")
        print("  - The Conduit container")
        print(f"  - The {VOLUME_NAME} Docker volume (node identity!)")
        print(f"  - The {NETWORK_NAME} Docker network")
        print("  - The Docker image")
        print(f"  - The log file ({self.paths.log_file})")
        print(f"  - The config file ({self.paths.config_file})")
        print(f"  - The seccomp profile ({self.paths.seccomp_file})")
        print()

        backups = list_backups(self.paths)
        if backups:
            UI.ok(f"You have {len(backups)} backup key(s) in {self.paths.backup_dir}")
        else:
            UI.warn("⚠ You have NO backup keys. Your node identity will be LOST.")
            print("  Consider running 'Backup Key' first!")
        print()

        delete_backups = False
        if backups:
            print(Term.style("Do you want to delete your backup keys as well?", Term.BOLD))
            delete_backups = UI.confirm("Delete backups?")
            if delete_backups:
                print(Term.style("⚠ Backups will be PERMANENTLY DELETED", Term.RED))
            else:
                UI.ok("Backups will be preserved")
            print()

        if UI.ask("Are you sure you want to uninstall? (type 'yes' to confirm): ") != "yes":
            print("Uninstall cancelled.")
            UI.pause()
            return

        print()
        print("Removing container, volume, network, image and local files...")
        uninstall(self.paths, delete_backups=delete_backups)
        print()
        print(Term.style(RULE, Term.GREEN))
        UI.ok("Uninstall complete - All Conduit data removed")
        print(Term.style(RULE, Term.GREEN))
        print()
        if backups and not delete_backups:
            print(f"Your backup keys are preserved in: {Term.style(self.paths.backup_dir, Term.CYAN)}")
            print("You can use these to restore your node identity after reinstalling.")
            print()
        print(Term.style("Goodbye!", Term.CYAN))
        self.running = False


# =============================================================================
# CLI
# =============================================================================

def cli_start(args: argparse.Namespace, paths: Paths, config: Config) -> None:
    """Smart start, installing with flags/saved values when needed"""
    action = smart_start()
    if action in (ACTION_RESTART, ACTION_START):
        if args.max_clients is not None or args.bandwidth is not None:
            logger.warning("--max-clients/--bandwidth only apply on install; use the menu to reconfigure")
        print(f"{action.capitalize()}ed {CONTAINER_NAME}")
        return
    if action is None:
        print(f"Failed to start {CONTAINER_NAME}", file=sys.stderr)
        sys.exit(1)

    if args.max_clients is not None:
        max_clients = args.max_clients
    else:
        max_clients = config.max_clients or recommended_clients(psutil.cpu_count() or 1)
    bandwidth = args.bandwidth if args.bandwidth is not None else (
        config.bandwidth if config.bandwidth is not None else DEFAULT_BANDWIDTH
    )
    for error in (validate_max_clients(str(max_clients)), validate_bandwidth(str(bandwidth))):
        if error:
            print(f"Error: {error}", file=sys.stderr)
            sys.exit(1)

    ok = deploy(
        config, max_clients, bandwidth, paths,
        confirm_mismatch=lambda actual: args.yes,
        progress=print,
    )
    if not ok:
        print(f"Failed to install {CONTAINER_NAME}", file=sys.stderr)
        sys.exit(1)
    print(f"Installed {CONTAINER_NAME} (max-clients {max_clients}, bandwidth {bandwidth})")


def cli_stop(args: argparse.Namespace, paths: Paths, config: Config) -> None:
    result = stop_service()
    if result is None:
        print(f"{CONTAINER_NAME} is not running")
    elif result:
        print(f"Stopped {CONTAINER_NAME}")
    else:
        print(f"Failed to stop {CONTAINER_NAME}", file=sys.stderr)
        sys.exit(1)


def cli_status(args: argparse.Namespace, paths: Paths, config: Config) -> None:
    """One-shot summary: state, node, clients"""
    container = Docker.find_container(CONTAINER_NAME)
    if container is None:
        print("○ Conduit: Not installed")
        return
    if not container.is_running:
        print("○ Conduit: Stopped")
    else:
        stats = latest_stats(Docker.logs(CONTAINER_NAME, tail=STATS_TAIL))
        print(f"● Conduit: Running ({container.Status})")
        print(f"Clients: {stats.connected} connected, {stats.connecting} connecting")
        print(f"Traffic: up {stats.up}, down {stats.down}")
    print(f"Node: {get_node_id() or 'Not available'}")


def cli_dashboard(args: argparse.Namespace, paths: Paths, config: Config) -> None:
    Dashboard(interval=args.interval).run()


def cli_logs(args: argparse.Namespace, paths: Paths, config: Config) -> None:
    try:
        Docker.stream_logs(CONTAINER_NAME, follow=args.follow, tail=args.tail)
    except KeyboardInterrupt:
        pass


def cli_node_id(args: argparse.Namespace, paths: Paths, config: Config) -> None:
    node_id = get_node_id()
    if not node_id:
        print("No node ID found", file=sys.stderr)
        sys.exit(1)
    print(node_id)


def cli_backup(args: argparse.Namespace, paths: Paths, config: Config) -> None:
    backup_file = backup_key(paths)
    if backup_file is None:
        print("No node key found. Has Conduit been started at least once?", file=sys.stderr)
        sys.exit(1)
    print(backup_file)


def cli_restore(args: argparse.Namespace, paths: Paths, config: Config) -> None:
    if not os.path.isfile(args.file):
        print(f"File not found: {args.file}", file=sys.stderr)
        sys.exit(1)
    if not args.yes and not UI.confirm("This will replace the current node key. Proceed?"):
        print("Restore cancelled.")
        return
    if not restore_key(args.file):
        print("Restore failed", file=sys.stderr)
        sys.exit(1)
    print(f"Restored node key from {args.file}")


def cli_update(args: argparse.Namespace, paths: Paths, config: Config) -> None:
    """Report whether a newer version is published"""
    script = fetch_remote_script()
    remote = parse_version(script) if script else None
    if not remote:
        print("Could not check for updates", file=sys.stderr)
        sys.exit(1)
    if is_newer(remote):
        print(f"New version available: {remote} (current {VERSION})")
    else:
        print(f"Up to date ({VERSION})")


def usage() -> int:
    """Display usage information"""
    output_lines = [
        f"conduitctl {VERSION} - security-hardened Psiphon Conduit manager",
        "──────────────────────────────────────────────",
        "- conduitctl                            ==> interactive menu",
        "- conduitctl help                       ==> show this help",
        "──────────────────────────────────────────────",
        "- conduitctl start                      ==> start, restart or install",
        "- conduitctl start --max-clients 200 --bandwidth 10",
        "- conduitctl stop                       ==> stop the container",
        "- conduitctl status                     ==> state, node ID, clients",
        "- conduitctl dashboard                  ==> live dashboard",
        "- conduitctl logs -f                    ==> follow container logs",
        "- conduitctl logs -n 100                ==> show last 100 lines",
        "──────────────────────────────────────────────",
        "- conduitctl node-id                    ==> print node ID",
        "- conduitctl backup                     ==> back up node key",
        "- conduitctl restore <file>             ==> restore node key",
        "- conduitctl update                     ==> check for a new version",
    ]
    print("\n" + "\n".join(output_lines) + "\n")
    return 0


def positive_float(value: str) -> float:
    """argparse type for refresh intervals"""
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="conduitctl - Psiphon Conduit manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug output")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    start_parser = subparsers.add_parser("start", help="Start, restart or install")
    start_parser.add_argument("--max-clients", type=int, help="Maximum concurrent clients")
    start_parser.add_argument("--bandwidth", type=int, help="Mbps, -1 for unlimited")
    start_parser.add_argument("-y", "--yes", action="store_true", help="Accept image digest mismatch")
    start_parser.set_defaults(func=cli_start)

    subparsers.add_parser("stop", help="Stop container").set_defaults(func=cli_stop)
    subparsers.add_parser("status", help="Show status").set_defaults(func=cli_status)

    dashboard_parser = subparsers.add_parser("dashboard", help="Live dashboard")
    dashboard_parser.add_argument("--interval", type=positive_float, default=DASHBOARD_INTERVAL, help="Seconds between refreshes")
    dashboard_parser.set_defaults(func=cli_dashboard)

    logs_parser = subparsers.add_parser("logs", help="Show container logs")
    logs_parser.add_argument("-f", "--follow", action="store_true", help="Follow logs")
    logs_parser.add_argument("-n", "--tail", type=int, default=LOGS_TAIL, help="Number of lines")
    logs_parser.set_defaults(func=cli_logs)

    subparsers.add_parser("node-id", help="Print node ID").set_defaults(func=cli_node_id)
    subparsers.add_parser("backup", help="Back up node key").set_defaults(func=cli_backup)

    restore_parser = subparsers.add_parser("restore", help="Restore node key")
    restore_parser.add_argument("file", help="Backup file")
    restore_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    restore_parser.set_defaults(func=cli_restore)

    subparsers.add_parser("update", help="Check for updates").set_defaults(func=cli_update)
    return parser


def main(argv: list[str] | None = None, home: str | None = None) -> None:
    """Main entry point"""
    argv = sys.argv[1:] if argv is None else argv
    if argv and argv[0] in ("help", "-h", "--help"):
        sys.exit(usage())

    args = build_parser().parse_args(argv)
    paths = Paths.from_home(home)
    setup_logging(paths.log_file, verbose=args.verbose)
    config = Config.load(paths.config_file)

    if args.command != "update" and not check_docker():
        sys.exit(1)

    if args.command is None:
        Manager(paths, config).run()
    else:
        args.func(args, paths, config)
        # Output errors to stderr as JSON if any
        if _errors:
            sys.stderr.write(json.dumps({"errors": _errors}, indent=2) + "\n")


if __name__ == "__main__":
    main()
