"""
Fixed rule tables for the decision-support engine.

The interaction table, cross-reactivity map and pregnancy-category text are
read from YAML once and frozen. Nothing in the engine mutates them after
start-up, so a single RuleTables instance can be shared across requests.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError as SchemaValidationError

from .errors import DecisionSupportError, ErrorCode
from .schema import EngineSettings, InteractionSeverity

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent / "config"
RULES_FILE = "rules.yaml"
SETTINGS_FILE = "engine.yaml"
PROTOCOLS_FILE = "protocols.yaml"

@dataclass(frozen=True)
class InteractionRule:
    """Two pattern sets plus the severity bucket they report into"""
    drug1_patterns: Tuple[str, ...]
    drug2_patterns: Tuple[str, ...]
    severity: InteractionSeverity
    description: str
    recommendation: str = ""

@dataclass(frozen=True)
class ConditionKeywords:
    """Chronic-condition substrings that flag renal or hepatic impairment"""
    renal: Tuple[str, ...]
    hepatic: Tuple[str, ...]

@dataclass(frozen=True)
class RuleTables:
    interaction_rules: Tuple[InteractionRule, ...]
    cross_reactivity: Mapping[str, Tuple[str, ...]]
    pregnancy_categories: Mapping[str, str]
    dose_conditions: ConditionKeywords
    safety_conditions: ConditionKeywords
    general_advice: Tuple[str, ...]

def _lower_tuple(values) -> Tuple[str, ...]:
    return tuple(str(v).lower() for v in (values or []))

def read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise DecisionSupportError(
            error_code=ErrorCode.CFG_FILE_NOT_FOUND,
            message=f"Configuration file not found: {path}",
            details={"path": str(path)},
            original_exception=e
        )
    except yaml.YAMLError as e:
        raise DecisionSupportError(
            error_code=ErrorCode.CFG_INVALID_CONFIG,
            message=f"Configuration file is not valid YAML: {path}",
            details={"path": str(path)},
            original_exception=e
        )

    if not isinstance(data, dict):
        raise DecisionSupportError(
            error_code=ErrorCode.CFG_INVALID_CONFIG,
            message=f"Configuration file must contain a mapping: {path}",
            details={"path": str(path)}
        )
    return data

def _build_interaction_rule(raw: Dict[str, Any], index: int) -> InteractionRule:
    try:
        return InteractionRule(
            drug1_patterns=_lower_tuple(raw['drug1_patterns']),
            drug2_patterns=_lower_tuple(raw['drug2_patterns']),
            severity=InteractionSeverity(raw['severity']),
            description=raw['description'],
            recommendation=raw.get('recommendation', '')
        )
    except (KeyError, ValueError, TypeError) as e:
        raise DecisionSupportError(
            error_code=ErrorCode.CFG_INVALID_CONFIG,
            message=f"Interaction rule #{index} is malformed",
            details={"rule": raw},
            original_exception=e
        )

def _build_keywords(raw: Optional[Dict[str, Any]]) -> ConditionKeywords:
    raw = raw or {}
    return ConditionKeywords(
        renal=_lower_tuple(raw.get('renal')),
        hepatic=_lower_tuple(raw.get('hepatic'))
    )

def build_rule_tables(data: Dict[str, Any]) -> RuleTables:
    """Freeze a parsed rules document into RuleTables"""
    rules = tuple(
        _build_interaction_rule(raw, i)
        for i, raw in enumerate(data.get('interaction_rules', []))
    )

    cross_reactivity = MappingProxyType({
        str(allergen).lower(): _lower_tuple(related)
        for allergen, related in (data.get('cross_reactivity') or {}).items()
    })

    pregnancy = MappingProxyType({
        str(category).upper(): text
        for category, text in (data.get('pregnancy_categories') or {}).items()
    })

    keywords = data.get('condition_keywords') or {}

    return RuleTables(
        interaction_rules=rules,
        cross_reactivity=cross_reactivity,
        pregnancy_categories=pregnancy,
        dose_conditions=_build_keywords(keywords.get('dosing')),
        safety_conditions=_build_keywords(keywords.get('safety')),
        general_advice=tuple(data.get('general_advice', []))
    )

def load_rule_tables(config_dir: Optional[Path] = None) -> RuleTables:
    """Load rules.yaml from the config directory"""
    config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    tables = build_rule_tables(read_yaml(config_dir / RULES_FILE))
    logger.info(
        f"Loaded {len(tables.interaction_rules)} interaction rules and "
        f"{len(tables.cross_reactivity)} cross-reactivity classes from {config_dir}"
    )
    return tables

def load_engine_settings(config_dir: Optional[Path] = None) -> EngineSettings:
    """Load engine.yaml, falling back to defaults when it is absent"""
    config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    settings_file = config_dir / SETTINGS_FILE
    if not settings_file.exists():
        logger.warning(f"Settings file {settings_file} not found, using defaults")
        return EngineSettings()

    data = read_yaml(settings_file)
    try:
        return EngineSettings(**(data.get('settings') or {}))
    except (SchemaValidationError, TypeError) as e:
        raise DecisionSupportError(
            error_code=ErrorCode.CFG_INVALID_CONFIG,
            message=f"Invalid engine settings in {settings_file}",
            details={"path": str(settings_file)},
            original_exception=e
        )

@lru_cache(maxsize=1)
def default_rule_tables() -> RuleTables:
    """Rule tables bundled with the package, loaded on first use"""
    return load_rule_tables(DEFAULT_CONFIG_DIR)

def mentions_any(values, keywords: Tuple[str, ...]) -> bool:
    """True when any value contains any keyword (case-insensitive)"""
    lowered = [str(v).lower() for v in values or []]
    return any(keyword in value for value in lowered for keyword in keywords)
