"""Shared test fixtures for az-condplan tests."""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from az_condplan.app import app

# ---------------------------------------------------------------------------
# Sample templates
# ---------------------------------------------------------------------------

AUDIT_TEMPLATE: dict[str, Any] = {
    "parameters": {
        "env": {
            "type": "string",
            "allowedValues": ["Development", "Production"],
            "defaultValue": "Development",
        },
        "location": {"type": "string", "defaultValue": "westeurope"},
    },
    "variables": {
        "prefix": "[concat('contoso-', toLower(env))]",
    },
    "resources": [
        {
            "id": "auditStorageAccount",
            "type": "Microsoft.Storage/storageAccounts",
            "name": "stauditcontoso",
            "condition": "[env == 'Production']",
            "properties": {
                "location": "[location]",
                "primaryEndpoints": {"blob": "https://stauditcontoso.blob.core.windows.net/"},
            },
        },
        {
            "id": "webApp",
            "type": "Microsoft.Web/sites",
            "name": "[concat(prefix, '-web')]",
            "properties": {
                "location": "[location]",
                "auditEndpoint": (
                    "[env == 'Production' ? "
                    "auditStorageAccount.properties.primaryEndpoints.blob : '']"
                ),
            },
        },
    ],
}

MONITORING_TEMPLATE: dict[str, Any] = {
    "parameters": {
        "deployMonitoring": {"type": "bool", "defaultValue": False},
    },
    "resources": [
        {
            "id": "app",
            "type": "Microsoft.Web/sites",
            "name": "app-contoso",
            "properties": {
                "workspaceId": "[deployMonitoring ? workspace.id : '']",
            },
        },
    ],
    "modules": [
        {
            "id": "monitoring",
            "name": "monitoring",
            "condition": "[deployMonitoring]",
            "resources": [
                {
                    "id": "workspace",
                    "type": "Microsoft.OperationalInsights/workspaces",
                    "name": "log-contoso",
                },
                {
                    "id": "alertRule",
                    "type": "Microsoft.Insights/scheduledQueryRules",
                    "name": "alert-contoso",
                    "properties": {"workspace": "[workspace.id]"},
                },
            ],
        }
    ],
}


@pytest.fixture()
def audit_document() -> dict[str, Any]:
    """Web app reading a storage account deployed only in Production."""
    return copy.deepcopy(AUDIT_TEMPLATE)


@pytest.fixture()
def monitoring_document() -> dict[str, Any]:
    """Conditional module with two members, read by a top-level web app."""
    return copy.deepcopy(MONITORING_TEMPLATE)


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Ignore CONDPLAN_* variables and any .env file of the developer."""
    for key in list(os.environ):
        if key.upper().startswith("CONDPLAN_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def client():
    """Create a FastAPI test client."""
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def _restore_logging():
    """Undo the handler swap done by the CLI's logging setup."""
    app_logger = logging.getLogger("az_condplan")
    handlers, level = list(app_logger.handlers), app_logger.level
    yield
    app_logger.handlers = handlers
    app_logger.setLevel(level)
