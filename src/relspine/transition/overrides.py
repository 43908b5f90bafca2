"""Upgrade override document composition.

The override is layered on top of the release's prior values
(``--reuse-values``). Prior-value reuse cannot supply defaults for
sub-components that did not exist in the older package, so every block
introduced by a feature-bearing package is written out in full here.

Document layout::

    global            license + image tag              (always)
    api               frontend service ports           (feature package)
    dataSetup         image tag + upgrade flag         (always)
    resourcesInit     image tag                        (always)
    purge             image tag                        (always)
    documentService   image tag                        (always)
    env               upgradeCompatibilityVerified     (always)
    setupCfg          upgrade flag (+ new fields)      (always / feature package)
    identityService   complete sub-chart block         (feature package)
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any

from relspine.core.logging import get_logger
from relspine.transition.models import ConnectivityProfile, TransitionPlan
from relspine.transition.versions import VersionIdentifier, parse_optional

logger = get_logger(__name__)

IMAGE_TAG_COMPONENTS = ("dataSetup", "resourcesInit", "purge", "documentService")

# Live-config key → ConnectivityProfile field
CONNECTIVITY_KEYS: dict[str, str] = {
    "dbHost": "db_host",
    "dbPort": "db_port",
    "dbData": "db_data",
    "dbSecret": "db_secret",
    "dbVendor": "db_vendor",
    "dbDrivers": "db_drivers",
}


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------


def deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Return *base* with *overlay* merged in; overlay wins on scalar conflicts."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def overlay_existing(defaults: dict[str, Any], live: dict[str, Any]) -> dict[str, Any]:
    """Keep the shape of *defaults* but take any value *live* already sets.

    Only keys present in *defaults* are considered, so unrelated live
    configuration is not copied into the override.
    """
    result = copy.deepcopy(defaults)
    for key, default in defaults.items():
        if key not in live:
            continue
        current = live[key]
        if isinstance(default, dict) and isinstance(current, dict):
            result[key] = overlay_existing(default, current)
        elif current is not None:
            result[key] = copy.deepcopy(current)
    return result


def _find_key(document: Any, key: str) -> Any:
    """Depth-first search for the first occurrence of *key*."""
    if isinstance(document, dict):
        if key in document and document[key] not in (None, ""):
            return document[key]
        for value in document.values():
            found = _find_key(value, key)
            if found is not None:
                return found
    elif isinstance(document, list):
        for item in document:
            found = _find_key(item, key)
            if found is not None:
                return found
    return None


def extract_connectivity(values: dict[str, Any]) -> ConnectivityProfile:
    """Pull database identity fields out of the live configuration.

    Each field is looked up under ``setupCfg`` first and then anywhere in
    the document; absent fields fall back to the profile defaults.
    """
    defaults = ConnectivityProfile()
    setup_cfg = values.get("setupCfg") if isinstance(values.get("setupCfg"), dict) else {}
    found: dict[str, Any] = {}

    for key, attr in CONNECTIVITY_KEYS.items():
        value = setup_cfg.get(key)
        if value in (None, ""):
            value = _find_key(values, key)
        if value in (None, ""):
            continue
        found[attr] = value

    if "db_port" in found:
        try:
            found["db_port"] = int(found["db_port"])
        except (TypeError, ValueError):
            logger.warning("overrides.db_port_invalid", value=found["db_port"], default=defaults.db_port)
            del found["db_port"]

    return ConnectivityProfile(**{k: v if k == "db_port" else str(v) for k, v in found.items()})


def feature_bearing(package_version: str | None, threshold: str) -> bool:
    """True when *package_version* ships the newer sub-components."""
    target = parse_optional(package_version)
    if target is None:
        return False
    return target >= VersionIdentifier.parse(threshold)


def crosses_feature_threshold(source_package: str | None, target_package: str | None, threshold: str) -> bool:
    """True when the move lands on a feature-bearing package from one without.

    A source whose package version cannot be read is treated as pre-feature,
    so the full blocks are written rather than silently skipped.
    """
    if not feature_bearing(target_package, threshold):
        return False
    return not feature_bearing(source_package, threshold)


# ---------------------------------------------------------------------------
# Feature blocks
# ---------------------------------------------------------------------------


def _port(name: str, port: int, node_port: int) -> dict[str, Any]:
    return {
        "name": name,
        "port": port,
        "targetPort": name,
        "nodePort": node_port,
        "protocol": "TCP",
    }


def feature_defaults(connectivity: ConnectivityProfile) -> dict[str, Any]:
    """Defaults for blocks introduced by feature-bearing packages."""
    return {
        "api": {
            "frontendService": {
                "ports": {
                    "http": _port("http", 35005, 30005),
                    "https": _port("https", 35006, 30006),
                    "fg2https": _port("fg2https", 35009, 30009),
                },
            },
        },
        "setupCfg": {
            "enableSfg2": False,
            "legacyApisAuthType": "basic",
            "licenseAcceptEnableFileOperation": True,
        },
        "identityService": {
            "enabled": False,
            "license": True,
            "service": {
                "type": "ClusterIP",
                "externalPort": 443,
                "nodePort": None,
                "externalIP": None,
                "loadBalancerIP": None,
                "annotations": {},
            },
            "ingress": {
                "enabled": False,
                "host": "",
                "tls": {"enabled": False, "secretName": ""},
                "controller": "nginx",
                "annotations": {},
                "labels": {},
            },
            "autoscaling": {
                "enabled": False,
                "minReplicas": 1,
                "maxReplicas": 2,
                "targetCPUUtilizationPercentage": 60,
            },
            "application": {
                "dbVendor": connectivity.db_vendor,
                "dbHost": connectivity.db_host,
                "dbPort": connectivity.db_port,
                "dbData": connectivity.db_data,
                "dbSecret": connectivity.db_secret,
                "dbUseSsl": False,
                "oracleUseServiceName": False,
                "mssqlTrustServerCertificate": True,
                "mssqlEncrypt": True,
                "clientApplicationName": "b2bi",
                "corsAllowedOrigins": "*",
                "clientSecret": "identity-client-secret",
                "token": {"accessTokenExpire": 300, "refreshTokenExpire": 3600},
                "logging": {"level": "ERROR"},
                "server": {
                    "port": 9443,
                    "ssl": {
                        "enabled": True,
                        "skipSniValidation": True,
                        "protocol": "TLS",
                        "enabledProtocols": "TLSv1.2,TLSv1.3",
                    },
                    "sessionCookieName": "AUTH_SESSION_ID",
                },
            },
        },
    }


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------


class OverrideComposer:
    """Builds the override document for an upgrade plan.

    Pure: returns a new document and leaves both the plan and the source
    values untouched. The caller persists the result.

    Example:
        >>> composer = OverrideComposer(feature_chart_version="3.2.0")
        >>> doc = composer.compose(plan, live_values)
        >>> doc["dataSetup"]["upgrade"]
        True
    """

    def __init__(self, feature_chart_version: str = "3.2.0") -> None:
        self.feature_chart_version = feature_chart_version

    def includes_features(self, plan: TransitionPlan) -> bool:
        return crosses_feature_threshold(
            plan.source.package_version, plan.target_package_version, self.feature_chart_version
        )

    def compose(self, plan: TransitionPlan, source_values: dict[str, Any]) -> dict[str, Any]:
        tag = plan.target_app_version
        schema_setup_enabled = plan.schema_risk
        data_migration_enabled = plan.schema_risk

        document: dict[str, Any] = {
            "global": {"license": True, "image": {"tag": tag}},
        }
        for component in IMAGE_TAG_COMPONENTS:
            document[component] = {"image": {"tag": tag}}
        document["dataSetup"]["upgrade"] = data_migration_enabled
        document["env"] = {"upgradeCompatibilityVerified": True}
        document["setupCfg"] = {"upgrade": schema_setup_enabled}

        if self.includes_features(plan):
            connectivity = plan.connectivity or extract_connectivity(source_values)
            features = overlay_existing(feature_defaults(connectivity), source_values)
            # Required keys above take precedence over live values.
            document = deep_merge(features, document)
            logger.info(
                "overrides.feature_blocks_added",
                package_version=plan.target_package_version,
                blocks=sorted(features),
            )

        return _ordered(document)


_ORDER = (
    "global",
    "api",
    "dataSetup",
    "resourcesInit",
    "purge",
    "documentService",
    "env",
    "setupCfg",
    "identityService",
)


def _ordered(document: dict[str, Any]) -> dict[str, Any]:
    """Reorder top-level keys to match the documented layout."""
    ordered = {key: document[key] for key in _ORDER if key in document}
    ordered.update({k: v for k, v in document.items() if k not in ordered})
    return ordered


def override_header(plan: TransitionPlan, generated: datetime) -> str:
    """Comment banner written above the override YAML."""
    rule = "# " + "=" * 77
    lines = [
        rule,
        "# Upgrade override values",
        f"# Release       : {plan.source.name}",
        f"# Namespace     : {plan.source.namespace}",
        f"# From          : {plan.source.app_version}",
        f"# To            : {plan.target_app_version}",
        f"# Package       : {plan.source.package_version or '?'} -> {plan.target_package_version or '?'}",
        f"# Upgrade type  : {plan.tier.value}",
        f"# DB schema chg : {str(plan.schema_risk).lower()}",
        f"# Generated     : {generated.strftime('%Y%m%d-%H%M%S')}",
        rule,
        "",
    ]
    return "\n".join(lines)


__all__ = [
    "OverrideComposer",
    "deep_merge",
    "extract_connectivity",
    "crosses_feature_threshold",
    "feature_bearing",
    "feature_defaults",
    "overlay_existing",
    "override_header",
]
