# File: lattice_link/validation.py
"""
Desired-state validation

Static checks run before any provider call:
- Name syntax (mesh resources and Kubernetes objects)
- Key uniqueness per resource type
- Cross references (listener -> target group, alias -> service)
- Port ranges and target addresses
- Protocol and auth-type compatibility
"""

import ipaddress
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from .models import ConnectivityGraph

# Lowercase alphanumerics and single hyphens, no leading or trailing hyphen.
SAFE_NAME_REGEX = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
# RFC 1123 label, as Kubernetes requires for Service names.
KUBE_NAME_REGEX = re.compile(r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$")

AUTH_TYPES = {"NONE", "AWS_IAM"}
TARGET_GROUP_PROTOCOLS = {"TCP", "HTTP", "HTTPS"}
LISTENER_PROTOCOLS = {"TCP", "HTTP", "HTTPS", "TLS_PASSTHROUGH"}
RULE_PROTOCOLS = {"tcp", "udp", "-1"}


class ValidationSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ValidationResult:
    """Result of a single validation check."""

    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    issues: List[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    """Full validation report."""

    passed: bool
    errors: int
    warnings: int
    results: List[ValidationResult]

    def error_messages(self) -> List[str]:
        return [
            issue
            for result in self.results
            if not result.passed and result.severity == ValidationSeverity.ERROR
            for issue in result.issues
        ]

    def warning_messages(self) -> List[str]:
        return [
            issue
            for result in self.results
            if result.severity == ValidationSeverity.WARNING
            for issue in result.issues
        ]


def is_safe_name(name: str) -> bool:
    return bool(name) and SAFE_NAME_REGEX.match(name) is not None


def is_kube_name(name: str) -> bool:
    return bool(name) and KUBE_NAME_REGEX.match(name) is not None


def validate_port(port: Any) -> bool:
    """Validate that a port is an integer between 1 and 65535."""
    return isinstance(port, int) and not isinstance(port, bool) and 0 < port <= 65535


def validate_ip_address(ip: str) -> bool:
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True


class GraphValidator:
    """
    Validates a ConnectivityGraph.

    Each validator returns one ValidationResult; errors fail the report,
    warnings are surfaced but do not block an apply.
    """

    def __init__(self):
        self.validators = [
            self._validate_names,
            self._validate_unique_keys,
            self._validate_references,
            self._validate_ports,
            self._validate_target_addresses,
            self._validate_protocols,
            self._validate_security_group_rule,
            self._validate_degraded_target_groups,
        ]

    def validate_all(self, graph: ConnectivityGraph) -> ValidationReport:
        results = [validator(graph) for validator in self.validators]
        errors = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warnings = sum(1 for r in results if r.severity == ValidationSeverity.WARNING)
        return ValidationReport(passed=errors == 0, errors=errors, warnings=warnings, results=results)

    @staticmethod
    def _result(name: str, issues: List[str], ok_message: str,
                severity: ValidationSeverity = ValidationSeverity.ERROR) -> ValidationResult:
        return ValidationResult(
            name=name,
            passed=len(issues) == 0 or severity != ValidationSeverity.ERROR,
            severity=severity if issues else ValidationSeverity.INFO,
            message=ok_message if not issues else f"{len(issues)} issue(s)",
            issues=issues,
        )

    def _validate_names(self, graph: ConnectivityGraph) -> ValidationResult:
        issues = []
        mesh_names = [("service network", graph.service_network.name)]
        mesh_names += [("target group", g.name) for g in graph.target_groups]
        mesh_names += [("service", s.name) for s in graph.services]
        mesh_names += [("listener", l.name) for s in graph.services for l in s.listeners]
        for label, name in mesh_names:
            if not is_safe_name(name):
                issues.append(f"Invalid {label} name: {name!r}")
        for service in graph.services:
            if service.name.startswith("svc-"):
                issues.append(f"Service name may not start with 'svc-': {service.name!r}")
            if service.auth_type not in AUTH_TYPES:
                issues.append(f"Invalid auth type for service {service.name}: {service.auth_type}")
        if graph.service_network.auth_type not in AUTH_TYPES:
            issues.append(f"Invalid auth type for service network: {graph.service_network.auth_type}")

        kube_objects = [("DNS alias", a.name, a.namespace) for a in graph.dns_aliases]
        if graph.gateway is not None:
            kube_objects.append(("gateway", graph.gateway.name, graph.gateway.namespace))
        for label, name, namespace in kube_objects:
            if not is_kube_name(name):
                issues.append(f"Invalid {label} name: {name!r}")
            if not is_kube_name(namespace):
                issues.append(f"Invalid namespace for {label} {name}: {namespace!r}")
        return self._result("names", issues, "Names are valid")

    def _validate_unique_keys(self, graph: ConnectivityGraph) -> ValidationResult:
        seen: Dict[Any, int] = {}
        for resource_type, key in graph.entity_keys():
            seen[(resource_type, key)] = seen.get((resource_type, key), 0) + 1
        issues = [
            f"Duplicate {resource_type.value} '{key}' declared {count} times"
            for (resource_type, key), count in seen.items()
            if count > 1
        ]
        return self._result("unique_keys", issues, "Declared resources are unique")

    def _validate_references(self, graph: ConnectivityGraph) -> ValidationResult:
        target_groups = {g.name for g in graph.target_groups}
        services = {s.name for s in graph.services}
        issues = []
        for service in graph.services:
            for listener in service.listeners:
                if listener.target_group not in target_groups:
                    issues.append(
                        f"Listener {listener.key} forwards to unknown target group '{listener.target_group}'"
                    )
        for assoc in graph.service_associations:
            if assoc.service not in services:
                issues.append(f"Service association references unknown service '{assoc.service}'")
        for alias in graph.dns_aliases:
            if alias.service not in services:
                issues.append(f"DNS alias {alias.key} references unknown service '{alias.service}'")
        return self._result("references", issues, "All references resolve")

    def _validate_ports(self, graph: ConnectivityGraph) -> ValidationResult:
        issues = []
        for group in graph.target_groups:
            if not validate_port(group.port):
                issues.append(f"Invalid port for target group {group.name}: {group.port}")
            for target in group.targets:
                if not validate_port(target.port):
                    issues.append(f"Invalid port for target {target.key}: {target.port}")
        for service in graph.services:
            for listener in service.listeners:
                if not validate_port(listener.port):
                    issues.append(f"Invalid port for listener {listener.key}: {listener.port}")
        for alias in graph.dns_aliases:
            if not validate_port(alias.port):
                issues.append(f"Invalid port for DNS alias {alias.key}: {alias.port}")
        rule = graph.security_group_rule
        if rule is not None and rule.protocol != "-1":
            if not (validate_port(rule.from_port) and validate_port(rule.to_port)):
                issues.append(f"Invalid port range for security group rule: {rule.from_port}-{rule.to_port}")
            elif rule.from_port > rule.to_port:
                issues.append(f"Security group rule port range is reversed: {rule.from_port}-{rule.to_port}")
        return self._result("ports", issues, "Ports are in range")

    def _validate_target_addresses(self, graph: ConnectivityGraph) -> ValidationResult:
        issues = []
        for group in graph.target_groups:
            if group.target_type != "IP":
                issues.append(f"Target group {group.name} must use IP targets, got {group.target_type}")
            for target in group.targets:
                if not validate_ip_address(target.ip):
                    issues.append(f"Invalid IP address for target {target.key}: {target.ip}")
        return self._result("target_addresses", issues, "Target addresses are valid")

    def _validate_protocols(self, graph: ConnectivityGraph) -> ValidationResult:
        groups = {g.name: g for g in graph.target_groups}
        issues = []
        for group in graph.target_groups:
            if group.protocol not in TARGET_GROUP_PROTOCOLS:
                issues.append(f"Unsupported protocol for target group {group.name}: {group.protocol}")
        for service in graph.services:
            for listener in service.listeners:
                if listener.protocol not in LISTENER_PROTOCOLS:
                    issues.append(f"Unsupported protocol for listener {listener.key}: {listener.protocol}")
                    continue
                group = groups.get(listener.target_group)
                if group is None:
                    continue
                if (listener.protocol in ("TCP", "TLS_PASSTHROUGH")) != (group.protocol == "TCP"):
                    issues.append(
                        f"Listener {listener.key} ({listener.protocol}) cannot forward to "
                        f"target group {group.name} ({group.protocol})"
                    )
        return self._result("protocols", issues, "Protocols are compatible")

    def _validate_security_group_rule(self, graph: ConnectivityGraph) -> ValidationResult:
        rule = graph.security_group_rule
        issues = []
        if rule is not None:
            if rule.protocol not in RULE_PROTOCOLS:
                issues.append(f"Unsupported security group rule protocol: {rule.protocol}")
            if bool(rule.source_prefix_list_id) == bool(rule.source_prefix_list_name):
                issues.append(
                    "Security group rule needs exactly one of source_prefix_list_id "
                    "or source_prefix_list_name"
                )
        return self._result("security_group_rule", issues, "Security group rule validated")

    def _validate_degraded_target_groups(self, graph: ConnectivityGraph) -> ValidationResult:
        issues = [
            f"Target group {g.name} declares no targets and will stay degraded"
            for g in graph.target_groups
            if not g.targets
        ]
        return self._result(
            "degraded_target_groups", issues, "Every target group has targets",
            severity=ValidationSeverity.WARNING,
        )


def validate_graph(graph: ConnectivityGraph) -> ValidationReport:
    return GraphValidator().validate_all(graph)
