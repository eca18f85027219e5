# File: lattice_link/providers/cluster.py
"""
Kubernetes driver for the cluster-facing objects: the Gateway API Gateway
bound to the service network and the ExternalName Services that alias mesh
DNS names inside the cluster.

Manifests are rendered from jinja2 templates. Every value is passed through
a sanitizing filter before it reaches the template so a name can never
inject extra YAML.
"""

import logging
import re
from typing import Any, Dict, Optional

import yaml
from jinja2 import Environment, StrictUndefined
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..errors import NotFoundError, OperationError, TransientProviderError
from ..models import ObservedResource, ResourceStatus, ResourceType
from .base import ResourceDriver

logger = logging.getLogger(__name__)

GATEWAY_GROUP = "gateway.networking.k8s.io"
GATEWAY_VERSION = "v1"
GATEWAY_PLURAL = "gateways"
MANAGED_BY = "lattice-link"


def sanitize_kube_name(input_val: Any) -> str:
    """
    Reduces a value to the characters allowed in a DNS-1123 name.
    Example: "rds-alias" -> "rds-alias"
    Example: "rds; kind: Secret" -> "rdskindsecret"
    """
    if not isinstance(input_val, str):
        return ""
    return re.sub(r"[^a-z0-9.-]", "", input_val.lower())


def sanitize_hostname(input_val: Any) -> str:
    if not isinstance(input_val, str):
        return ""
    return re.sub(r"[^a-zA-Z0-9.-]", "", input_val)


def validate_numeric(input_val: Any) -> int:
    if isinstance(input_val, int) and not isinstance(input_val, bool):
        return input_val
    return 0


GATEWAY_TEMPLATE = """\
apiVersion: {{ group }}/{{ version }}
kind: Gateway
metadata:
  name: {{ name | kube_name }}
  namespace: {{ namespace | kube_name }}
  labels:
    app.kubernetes.io/managed-by: {{ managed_by }}
spec:
  gatewayClassName: {{ gateway_class | kube_name }}
  listeners:
  - name: http
    protocol: HTTP
    port: 80
"""

EXTERNAL_NAME_TEMPLATE = """\
apiVersion: v1
kind: Service
metadata:
  name: {{ name | kube_name }}
  namespace: {{ namespace | kube_name }}
  labels:
    app.kubernetes.io/managed-by: {{ managed_by }}
spec:
  type: ExternalName
  externalName: {{ external_name | hostname }}
  ports:
  - port: {{ port | numeric }}
    protocol: TCP
"""

_env = Environment(undefined=StrictUndefined, autoescape=False)
_env.filters["kube_name"] = sanitize_kube_name
_env.filters["hostname"] = sanitize_hostname
_env.filters["numeric"] = validate_numeric


def render_manifest(template: str, **values) -> Dict[str, Any]:
    rendered = _env.from_string(template).render(managed_by=MANAGED_BY, **values)
    return yaml.safe_load(rendered)


def render_gateway(name: str, namespace: str, gateway_class: str) -> Dict[str, Any]:
    return render_manifest(GATEWAY_TEMPLATE, group=GATEWAY_GROUP, version=GATEWAY_VERSION,
                           name=name, namespace=namespace, gateway_class=gateway_class)


def render_external_name(name: str, namespace: str, external_name: str, port: int) -> Dict[str, Any]:
    return render_manifest(EXTERNAL_NAME_TEMPLATE, name=name, namespace=namespace,
                           external_name=external_name, port=port)


def translate_api_exception(e: ApiException, description: str, resource_type=None):
    if e.status == 404:
        return NotFoundError(f"{description}: not found")
    if e.status in (409, 429) or (e.status or 0) >= 500:
        return TransientProviderError(f"{description}: HTTP {e.status}: {e.reason}")
    return OperationError(f"{description}: HTTP {e.status}: {e.reason}", resource_type=resource_type)


def load_kube_config(context: Optional[str] = None) -> None:
    try:
        config.load_incluster_config()
    except config.ConfigException:
        logger.debug("No in-cluster config, loading local kubeconfig")
        try:
            config.load_kube_config(context=context)
        except config.ConfigException as e:
            raise OperationError(f"No usable Kubernetes configuration: {e}") from e


class KubernetesDriver(ResourceDriver):
    kinds = frozenset({ResourceType.CLUSTER_GATEWAY, ResourceType.DNS_ALIAS})

    def __init__(self, core_api=None, custom_api=None, context: Optional[str] = None):
        if core_api is None or custom_api is None:
            load_kube_config(context)
        self.core = core_api or client.CoreV1Api()
        self.custom = custom_api or client.CustomObjectsApi()

    def _call(self, description: str, kind: ResourceType, fn):
        try:
            return fn()
        except ApiException as e:
            raise translate_api_exception(e, description, resource_type=kind) from e

    def list_resources(self, kind, scope):
        namespace = scope["namespace"]
        if kind == ResourceType.CLUSTER_GATEWAY:
            response = self._call(f"list gateways in {namespace}", kind, lambda: self.custom.list_namespaced_custom_object(
                GATEWAY_GROUP, GATEWAY_VERSION, namespace, GATEWAY_PLURAL,
            ))
            return [self._gateway(item) for item in response.get("items", [])]
        response = self._call(f"list services in {namespace}", kind,
                              lambda: self.core.list_namespaced_service(namespace))
        return [self._alias(item) for item in response.items if item.spec.type == "ExternalName"]

    def get_resource(self, kind, resource_id, scope):
        namespace, name = resource_id.split("/", 1)
        try:
            if kind == ResourceType.CLUSTER_GATEWAY:
                return self._gateway(self._call(f"get gateway {resource_id}", kind, lambda: self.custom.get_namespaced_custom_object(
                    GATEWAY_GROUP, GATEWAY_VERSION, namespace, GATEWAY_PLURAL, name,
                )))
            return self._alias(self._call(f"get service {resource_id}", kind,
                                          lambda: self.core.read_namespaced_service(name, namespace)))
        except NotFoundError:
            return None

    def create_resource(self, kind, name, spec, scope):
        namespace = scope["namespace"]
        if kind == ResourceType.CLUSTER_GATEWAY:
            body = render_gateway(name, namespace, spec["gateway_class"])
            created = self._call(f"create gateway {namespace}/{name}", kind, lambda: self.custom.create_namespaced_custom_object(
                GATEWAY_GROUP, GATEWAY_VERSION, namespace, GATEWAY_PLURAL, body,
            ))
            return self._gateway(created)
        body = render_external_name(name, namespace, spec["external_name"], spec["port"])
        return self._alias(self._call(f"create service {namespace}/{name}", kind,
                                      lambda: self.core.create_namespaced_service(namespace, body)))

    def update_resource(self, kind, resource_id, spec, scope):
        namespace, name = resource_id.split("/", 1)
        if kind == ResourceType.CLUSTER_GATEWAY:
            raise OperationError("Gateways are recreated, never patched", resource_type=kind, key=resource_id)
        body = render_external_name(name, namespace, spec["external_name"], spec["port"])
        return self._alias(self._call(f"patch service {resource_id}", kind,
                                      lambda: self.core.patch_namespaced_service(name, namespace, body)))

    def delete_resource(self, kind, resource_id, scope):
        namespace, name = resource_id.split("/", 1)
        try:
            if kind == ResourceType.CLUSTER_GATEWAY:
                self._call(f"delete gateway {resource_id}", kind, lambda: self.custom.delete_namespaced_custom_object(
                    GATEWAY_GROUP, GATEWAY_VERSION, namespace, GATEWAY_PLURAL, name,
                ))
            else:
                self._call(f"delete service {resource_id}", kind,
                           lambda: self.core.delete_namespaced_service(name, namespace))
        except NotFoundError:
            logger.info(f"{kind.value} {resource_id} is already gone")

    @staticmethod
    def _gateway(item: Dict[str, Any]) -> ObservedResource:
        metadata = item.get("metadata", {})
        namespace = metadata.get("namespace", "default")
        conditions = item.get("status", {}).get("conditions", [])
        programmed = any(c.get("type") == "Programmed" and c.get("status") == "True" for c in conditions)
        return ObservedResource(
            ResourceType.CLUSTER_GATEWAY,
            metadata["name"],
            f"{namespace}/{metadata['name']}",
            status=ResourceStatus.DELETED if metadata.get("deletionTimestamp") else ResourceStatus.ACTIVE,
            attributes={
                "gateway_class": item.get("spec", {}).get("gatewayClassName"),
                "programmed": programmed,
            },
            scope={"namespace": namespace},
        )

    @staticmethod
    def _alias(service) -> ObservedResource:
        metadata = service.metadata
        ports = service.spec.ports or []
        return ObservedResource(
            ResourceType.DNS_ALIAS,
            metadata.name,
            f"{metadata.namespace}/{metadata.name}",
            status=ResourceStatus.DELETED if metadata.deletion_timestamp else ResourceStatus.ACTIVE,
            attributes={
                "external_name": service.spec.external_name,
                "port": ports[0].port if ports else None,
            },
            scope={"namespace": metadata.namespace},
        )
