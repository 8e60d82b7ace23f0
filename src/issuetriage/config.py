from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from .retry import RetryConfig
from .transfer import TransferRule, load_rules


class ConfigError(RuntimeError):
    pass


@dataclass
class RepositoryConfig:
    org: str
    repo: str
    enabled: bool = True


@dataclass
class TriageConfig:
    steps: list[str] = field(default_factory=list)
    workflow: str = ""
    repositories: list[RepositoryConfig] = field(default_factory=list)
    bot_users: list[str] = field(default_factory=list)
    # Similarity / duplicate detection
    collection: str = "issues"
    similarity_threshold: float = 0.65
    max_similar: int = 5
    duplicate_threshold: float = 0.8
    # Transfer routing
    transfer_rules: list[TransferRule] = field(default_factory=list)
    # Retry configuration for collaborator calls
    retry: RetryConfig = field(default_factory=RetryConfig)
    # Concurrency configuration
    workers: int = 0  # 0 sizes the pool from the batch length
    # Logging configuration
    logging_json_enabled: bool = False
    logging_level: str = "INFO"
    source_file: Path | None = None

    def find_repository(self, org: str, repo: str) -> RepositoryConfig | None:
        for entry in self.repositories:
            if entry.org == org and entry.repo == repo:
                return entry
        return None


def _resolve_env_var(value: Any, env_var_name: str | None = None) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        env_name = env_var_name or value[1:]
        return os.getenv(env_name, value)
    return value


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key, {}) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return cast(dict[str, Any], value)


def _repositories(raw: Any) -> list[RepositoryConfig]:
    out: list[RepositoryConfig] = []
    for entry in raw or []:
        if not isinstance(entry, dict) or not entry.get('org') or not entry.get('repo'):
            raise ConfigError(f'Invalid repository entry: {entry!r}')
        out.append(
            RepositoryConfig(
                org=str(entry['org']),
                repo=str(entry['repo']),
                enabled=bool(entry.get('enabled', True)),
            )
        )
    return out


def config_from_mapping(raw: dict[str, Any], source_file: Path | None = None) -> TriageConfig:
    defaults = _section(raw, 'defaults')
    transfer = _section(raw, 'transfer')
    retry = _section(raw, 'retry')
    concurrency = _section(raw, 'concurrency')
    logging_config = _section(raw, 'logging')
    qdrant = _section(raw, 'qdrant')

    rules_raw = transfer.get('rules', []) or []
    if not isinstance(rules_raw, list):
        raise ConfigError("'transfer.rules' must be a list")

    base_retry = RetryConfig()
    steps = raw.get('steps', []) or []
    if not isinstance(steps, list):
        raise ConfigError("'steps' must be a list of step names")

    try:
        return TriageConfig(
            steps=[str(s) for s in steps],
            workflow=str(raw.get('workflow', '') or ''),
            repositories=_repositories(raw.get('repositories')),
            bot_users=[str(u) for u in raw.get('bot_users', []) or []],
            collection=str(_resolve_env_var(qdrant.get('collection', 'issues'))),
            similarity_threshold=float(defaults.get('similarity_threshold', 0.65)),
            max_similar=int(defaults.get('max_similar_to_show', 5)),
            duplicate_threshold=float(transfer.get('duplicate_confidence_threshold', 0.8)),
            transfer_rules=load_rules(rules_raw),
            retry=RetryConfig(
                max_retries=int(retry.get('max_retries', base_retry.max_retries)),
                base_delay=float(retry.get('base_delay', base_retry.base_delay)),
                max_delay=float(retry.get('max_delay', base_retry.max_delay)),
                jitter_ratio=float(retry.get('jitter_ratio', base_retry.jitter_ratio)),
            ),
            workers=int(concurrency.get('workers', 0)),
            logging_json_enabled=bool(logging_config.get('json_enabled', False)),
            logging_level=str(logging_config.get('level', 'INFO')),
            source_file=source_file,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f'Invalid configuration value: {exc}') from exc


def load_config(path: str | Path) -> TriageConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f'Configuration file not found: {p}')
    try:
        raw = yaml.safe_load(p.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f'Invalid YAML in {p}: {exc}') from exc
    if not isinstance(raw, dict):
        raise ConfigError(f'Configuration root must be a mapping: {p}')
    return config_from_mapping(cast(dict[str, Any], raw), source_file=p)


__all__ = ["ConfigError", "RepositoryConfig", "TriageConfig", "config_from_mapping", "load_config"]
