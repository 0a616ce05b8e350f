from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from ceremony_monitor.config import Environment, RunConfig, dumps_toml, write_text
from ceremony_monitor.errors import ConfigSerializationError

U8_MAX = 255


@dataclass(slots=True)
class RuntimeParameters:
    # Delay between operator update calls, in milliseconds.
    operator_update_loop_delay: int = 10_000
    # Threads used for aggregation and other CPU heavy work.
    rayon_global_pool_threads: int = 30


@dataclass(slots=True)
class EnvironmentParameters:
    minimum_contributors_per_round: int = 1
    maximum_contributors_per_round: int = 5
    # Timeouts in seconds.
    contributor_seen_timeout: int = 3600
    participant_lock_timeout: int = 900
    queue_seen_timeout: int = 3600


@dataclass(slots=True)
class VerifierSettings:
    assigned_tasks_cache_ttl: int = 60
    assigned_tasks_cache_records_cap: int = 1000


@dataclass(slots=True)
class ReliabilityCheckSettings:
    is_enabled: bool = False
    # Contributors scoring at or above this may join the queue.
    accept_threshold: int = 8
    maximum_score: int = 100
    estimation_interval: int = 60
    number_of_challenges: int = 10
    challenge_size: int = 6_291_456
    total_size: int = 11
    batch_size: int = 2


@dataclass(slots=True)
class TwitterSettings:
    consumer_token: str = "some_token"
    consumer_secret: str = "some_secret"


NON_ZERO_FIELDS = {
    ("runtime_parameters", "operator_update_loop_delay"),
    ("runtime_parameters", "rayon_global_pool_threads"),
    ("environment_parameters", "minimum_contributors_per_round"),
    ("environment_parameters", "maximum_contributors_per_round"),
    ("verifier_settings", "assigned_tasks_cache_ttl"),
    ("verifier_settings", "assigned_tasks_cache_records_cap"),
    ("reliability_check", "accept_threshold"),
}

U8_FIELDS = {
    ("reliability_check", "accept_threshold"),
    ("reliability_check", "maximum_score"),
    ("reliability_check", "estimation_interval"),
    ("reliability_check", "number_of_challenges"),
    ("reliability_check", "total_size"),
    ("reliability_check", "batch_size"),
}

SECTION_TYPES = {
    "runtime_parameters": RuntimeParameters,
    "environment_parameters": EnvironmentParameters,
    "verifier_settings": VerifierSettings,
    "reliability_check": ReliabilityCheckSettings,
    "twitter_settings": TwitterSettings,
}


@dataclass(slots=True)
class CoordinatorDocument:
    """The file passed to the coordinator with ``--config``."""

    listen_address: str = "0.0.0.0:9000"
    sqlite_file: str = "setup.db3"
    setup: Environment = Environment.DEVELOPMENT
    # Contributors that stand in for regular contributors dropped mid-round.
    replacement_contributors: list[str] = field(default_factory=list)
    runtime_parameters: RuntimeParameters = field(default_factory=RuntimeParameters)
    environment_parameters: EnvironmentParameters = field(default_factory=EnvironmentParameters)
    verifier_settings: VerifierSettings = field(default_factory=VerifierSettings)
    reliability_check: ReliabilityCheckSettings = field(default_factory=ReliabilityCheckSettings)
    twitter_settings: TwitterSettings = field(default_factory=TwitterSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CoordinatorDocument:
        return cls(
            listen_address=data["listen_address"],
            sqlite_file=data["sqlite_file"],
            setup=Environment(data["setup"]),
            replacement_contributors=list(data.get("replacement_contributors", [])),
            **{
                name: section_type(**data.get(name, {}))
                for name, section_type in SECTION_TYPES.items()
            },
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "listen_address": self.listen_address,
            "sqlite_file": self.sqlite_file,
            "setup": self.setup.value,
            "replacement_contributors": list(self.replacement_contributors),
        }
        for name in SECTION_TYPES:
            section = getattr(self, name)
            data[name] = {item.name: getattr(section, item.name) for item in fields(section)}
        return data

    def validate(self) -> None:
        data = self.to_dict()
        for section, key in sorted(NON_ZERO_FIELDS):
            if data[section][key] <= 0:
                raise ConfigSerializationError(f"{section}.{key} must be non-zero")
        for section, key in sorted(U8_FIELDS):
            if not 0 <= data[section][key] <= U8_MAX:
                raise ConfigSerializationError(f"{section}.{key} must fit in 0..{U8_MAX}")


def build_coordinator_document(config: RunConfig) -> CoordinatorDocument:
    return CoordinatorDocument(
        setup=config.environment,
        replacement_contributors=list(config.replacement_contributors),
    )


def dumps_coordinator_toml(document: CoordinatorDocument) -> str:
    document.validate()
    return dumps_toml(document.to_dict())


def write_coordinator_config(config: RunConfig) -> Path:
    """Render and write the coordinator configuration; returns its path."""
    rendered = dumps_coordinator_toml(build_coordinator_document(config))
    path = config.coordinator_config_path
    write_text(path, rendered)
    return path
