# File: lattice_link/providers/__init__.py
"""Provider drivers and the factory that wires them together."""

import logging
from typing import Optional

import boto3

from ..config import Settings
from ..ledger import Ledger
from ..models import ConnectivityGraph, ResourceType
from .base import CompositeDriver, ResourceDriver
from .ec2 import Ec2Driver
from .lattice import LatticeDriver

logger = logging.getLogger(__name__)

CLUSTER_KINDS = frozenset({ResourceType.CLUSTER_GATEWAY, ResourceType.DNS_ALIAS})


def needs_cluster_driver(desired: ConnectivityGraph, ledger: Optional[Ledger] = None) -> bool:
    """Whether the graph declares cluster objects, or the ledger still tracks some to prune."""
    if desired.gateway is not None or desired.dns_aliases:
        return True
    if ledger is None:
        return False
    return any(record.resource_type in CLUSTER_KINDS for record in ledger.entries(desired.name))


def build_driver(settings: Settings, region: Optional[str] = None) -> ResourceDriver:
    """Build the composite driver for one region.

    The Kubernetes driver is only added when cluster objects are enabled; its
    client configuration is loaded on construction. Callers disable it for
    graphs without cluster objects, see ``needs_cluster_driver``.
    """
    region = region or settings.region
    session = boto3.Session(region_name=region)
    drivers = [LatticeDriver(session.client("vpc-lattice")), Ec2Driver(session.client("ec2"))]
    if settings.enable_cluster:
        from .cluster import KubernetesDriver

        drivers.append(KubernetesDriver(context=settings.kube_context))
    logger.debug(f"Built provider drivers for region {region or '<default>'}")
    return CompositeDriver(drivers)


__all__ = ["CompositeDriver", "ResourceDriver", "build_driver", "needs_cluster_driver"]
