from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ceremony_monitor.errors import ConfigError, ConfigSerializationError, ConfigWriteError
from ceremony_monitor.participants import parse_address

COORDINATOR_CONFIG_FILE = "config.toml"
COORDINATOR_LOG_FILE = "coordinator.log"


class Environment(Enum):
    DEVELOPMENT = "development"
    INNER = "inner"
    OUTER = "outer"
    UNIVERSAL = "universal"


@dataclass(slots=True)
class RunConfig:
    """Where the coordinator lives, how it runs, and where its artifacts go."""

    coordinator_bin: Path = Path("aleo-setup-coordinator")
    environment: Environment = Environment.DEVELOPMENT
    out_dir: Path = Path("out")
    replacement_contributors: list[str] = field(default_factory=list)

    @classmethod
    def default(cls) -> RunConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunConfig:
        section = data.get("coordinator", {})
        default = cls.default()
        try:
            environment = Environment(section.get("environment", default.environment.value))
        except ValueError as exc:
            raise ConfigError(
                f"Unknown environment: {section.get('environment')}"
            ) from exc
        return cls(
            coordinator_bin=Path(section.get("binary", str(default.coordinator_bin))),
            environment=environment,
            out_dir=Path(section.get("out_dir", str(default.out_dir))),
            replacement_contributors=[
                parse_address(address)
                for address in section.get("replacement_contributors", [])
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "coordinator": {
                "binary": str(self.coordinator_bin),
                "environment": self.environment.value,
                "out_dir": str(self.out_dir),
                "replacement_contributors": list(self.replacement_contributors),
            }
        }

    def resolve_paths(self, base_dir: Path) -> RunConfig:
        def _resolve(path: Path) -> Path:
            return path if path.is_absolute() else (base_dir / path)

        binary = self.coordinator_bin
        # A bare program name is looked up on PATH at launch time.
        if binary.parent != Path(".") or binary.is_absolute():
            binary = _resolve(binary)
        return RunConfig(
            coordinator_bin=binary,
            environment=self.environment,
            out_dir=_resolve(self.out_dir),
            replacement_contributors=list(self.replacement_contributors),
        )

    def transcript_dir(self) -> Path:
        if self.environment is Environment.DEVELOPMENT:
            return self.out_dir / "transcript" / "development"
        return self.out_dir / "transcript"

    @property
    def coordinator_config_path(self) -> Path:
        return self.out_dir / COORDINATOR_CONFIG_FILE

    @property
    def log_file_path(self) -> Path:
        return self.out_dir / COORDINATOR_LOG_FILE


def toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, Enum):
        return toml_value(value.value)
    if isinstance(value, Path):
        return json.dumps(str(value), ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(toml_value(item) for item in value) + "]"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    raise ConfigSerializationError(f"Cannot render {type(value).__name__} as TOML: {value!r}")


def dumps_toml(data: dict[str, Any]) -> str:
    """Render a two-level mapping: scalar keys first, then one table per dict."""
    lines: list[str] = []
    tables: list[tuple[str, dict[str, Any]]] = []
    for key, value in data.items():
        if isinstance(value, dict):
            tables.append((key, value))
            continue
        lines.append(f"{key} = {toml_value(value)}")
    if lines:
        lines.append("")
    for section, values in tables:
        lines.append(f"[{section}]")
        for key, value in values.items():
            lines.append(f"{key} = {toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def write_text(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ConfigWriteError(f"Error while writing {path}: {exc}") from exc


def load_run_config(path: Path) -> RunConfig:
    if not path.exists():
        return RunConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    return RunConfig.from_dict(data)


def save_run_config(path: Path, config: RunConfig) -> None:
    write_text(path, dumps_toml(config.to_dict()))
