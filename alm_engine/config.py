"""
Configuration loading for the ALM Engine.

Configuration is a plain dictionary: built-in defaults, overlaid by a YAML
or JSON file, overlaid by ALM_* environment variables.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .audit.report_sink import JsonlReportSink, MemoryReportSink, ReportSink
from .engine.pass_lock import PassLock
from .engine.policy_evaluator import PolicyEvaluator
from .engine.reconciler import ReconciliationEngine
from .exceptions import ConfigurationError
from .store import AccountStore, InMemoryAccountStore, JsonAccountStore, ShadowAccountStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "log_level": "INFO",
    "lock_file": "/run/alm-engine/pass.lock",
    "report_dir": "/var/log/alm-engine/reports",
    "policy_file": None,
    "verbose_audit": False,
    "store": {
        "backend": "shadow",
        "path": None,
        "shadow_path": "/etc/shadow",
        "passwd_path": "/etc/passwd",
        "min_uid": 1000,
        "max_uid": 60000,
        "state_file": "/var/lib/alm-engine/state.json",
    },
}

ENV_OVERRIDES = {
    "ALM_LOG_LEVEL": ("log_level",),
    "ALM_LOCK_FILE": ("lock_file",),
    "ALM_REPORT_DIR": ("report_dir",),
    "ALM_POLICY_FILE": ("policy_file",),
    "ALM_VERBOSE_AUDIT": ("verbose_audit",),
    "ALM_STORE_BACKEND": ("store", "backend"),
    "ALM_STORE_PATH": ("store", "path"),
}


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    Load configuration.

    Args:
        config_path: YAML (.yaml/.yml) or JSON file. Missing keys keep their defaults.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigurationError: if the file exists but cannot be parsed
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    environ = os.environ if environ is None else environ

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        try:
            with open(path, encoding="utf-8") as f:
                if path.suffix.lower() == ".json":
                    file_config = json.load(f)
                else:
                    file_config = yaml.safe_load(f) or {}
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Error loading config {path}: {e}") from e

        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")

        _deep_merge(config, file_config)
        logger.info(f"Loaded configuration from {path}")

    for env_name, keys in ENV_OVERRIDES.items():
        if env_name not in environ:
            continue
        value: Any = environ[env_name]
        if env_name == "ALM_VERBOSE_AUDIT":
            value = _env_bool(value)
        target = config
        for key in keys[:-1]:
            target = target.setdefault(key, {})
        target[keys[-1]] = value
        logger.debug(f"Applied environment override {env_name}")

    return config


def build_store(config: Dict[str, Any]) -> AccountStore:
    """Create the account store adapter named by config['store']['backend']."""
    store_config = config.get("store", {})
    backend = store_config.get("backend", "shadow")

    if backend == "shadow":
        return ShadowAccountStore(store_config)
    if backend == "json":
        if not store_config.get("path"):
            raise ConfigurationError("store.path is required for the json backend")
        return JsonAccountStore(store_config["path"], store_config)
    if backend == "memory":
        return InMemoryAccountStore(config=store_config)

    raise ConfigurationError(f"Unknown store backend: {backend}")


def build_report_sink(config: Dict[str, Any]) -> ReportSink:
    """JSONL sink under report_dir, or an in-memory sink when report_dir is unset."""
    report_dir = config.get("report_dir")
    if report_dir:
        return JsonlReportSink(report_dir)
    return MemoryReportSink()


def build_engine(config: Dict[str, Any], store: Optional[AccountStore] = None) -> ReconciliationEngine:
    """
    Wire a ReconciliationEngine from configuration.

    Args:
        config: Configuration from load_config()
        store: Use this store instead of building one from config
    """
    return ReconciliationEngine(
        store=store or build_store(config),
        evaluator=PolicyEvaluator(config.get("policy_file")),
        report_sink=build_report_sink(config),
        pass_lock=PassLock(config.get("lock_file")),
        verbose_audit=bool(config.get("verbose_audit", False)),
    )
