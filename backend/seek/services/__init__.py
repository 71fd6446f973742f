"""Services module for catalog business logic.

This module contains the demand classifier, the alert engine and the catalog
reconciler that merges scraped observations into the catalog.
"""

from seek.services.product_classifier import Classification, ProductClassifier
from seek.services.alert_system import Alert, AlertRule, AlertSystem
from seek.services.catalog_reconciler import CatalogReconciler, ReconcileReport

__all__ = [
    "Classification",
    "ProductClassifier",
    "Alert",
    "AlertRule",
    "AlertSystem",
    "CatalogReconciler",
    "ReconcileReport",
]
