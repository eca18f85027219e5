# File: lattice_link/providers/ec2.py
"""
EC2 driver for the security-group ingress rule and the managed prefix-list
lookup. A rule is identified by (group, protocol, port range, prefix list),
so the provider-visible name is built from exactly those fields.
"""

import logging
from typing import Any, Dict, List

from botocore.exceptions import ClientError

from ..errors import AmbiguousResourceError, NotFoundError, OperationError
from ..models import ObservedResource, ResourceType
from .aws import error_code, paginate, translate_errors
from .base import ResourceDriver

logger = logging.getLogger(__name__)

RULE_DESCRIPTION = "Managed by lattice-link"


def rule_name(protocol: str, from_port: int, to_port: int, prefix_list_id: str) -> str:
    return f"{protocol}:{from_port}-{to_port}:{prefix_list_id}"


def _rule(item: Dict[str, Any], scope: Dict[str, str]) -> ObservedResource:
    protocol = str(item.get("IpProtocol", "")).lower()
    from_port = item.get("FromPort", -1)
    to_port = item.get("ToPort", -1)
    prefix_list_id = item.get("PrefixListId")
    return ObservedResource(
        ResourceType.SECURITY_GROUP_RULE,
        rule_name(protocol, from_port, to_port, prefix_list_id),
        item["SecurityGroupRuleId"],
        attributes={
            "protocol": protocol,
            "from_port": from_port,
            "to_port": to_port,
            "prefix_list_id": prefix_list_id,
            "group_id": item.get("GroupId"),
        },
        scope=dict(scope),
    )


class Ec2Driver(ResourceDriver):
    kinds = frozenset({ResourceType.SECURITY_GROUP_RULE})

    def __init__(self, client):
        self.client = client

    def lookup_prefix_list(self, name: str) -> str:
        with translate_errors(f"look up prefix list {name}"):
            response = self.client.describe_managed_prefix_lists(
                Filters=[{"Name": "prefix-list-name", "Values": [name]}],
            )
        matches = [p["PrefixListId"] for p in response.get("PrefixLists", []) if p.get("PrefixListName") == name]
        if not matches:
            raise NotFoundError(f"Managed prefix list '{name}' does not exist in this region")
        if len(matches) > 1:
            raise AmbiguousResourceError(ResourceType.SECURITY_GROUP_RULE, name, matches)
        return matches[0]

    def list_resources(self, kind, scope):
        with translate_errors(f"list security group rules of {scope['group_id']}"):
            items = paginate(
                self.client, "describe_security_group_rules", "SecurityGroupRules",
                Filters=[{"Name": "group-id", "Values": [scope["group_id"]]}],
            )
        return [_rule(item, scope) for item in items if not item.get("IsEgress") and item.get("PrefixListId")]

    def get_resource(self, kind, resource_id, scope):
        try:
            with translate_errors(f"get security group rule {resource_id}"):
                response = self.client.describe_security_group_rules(SecurityGroupRuleIds=[resource_id])
        except NotFoundError:
            return None
        rules = response.get("SecurityGroupRules", [])
        return _rule(rules[0], scope) if rules else None

    def create_resource(self, kind, name, spec, scope):
        permission: Dict[str, Any] = {
            "IpProtocol": spec["protocol"],
            "PrefixListIds": [{"PrefixListId": spec["prefix_list_id"], "Description": RULE_DESCRIPTION}],
        }
        if spec["protocol"] != "-1":
            permission["FromPort"] = spec["from_port"]
            permission["ToPort"] = spec["to_port"]
        try:
            with translate_errors(f"authorize ingress {name} on {scope['group_id']}",
                                  resource_type=kind, key=name):
                response = self.client.authorize_security_group_ingress(
                    GroupId=scope["group_id"], IpPermissions=[permission],
                )
        except OperationError as e:
            if isinstance(e.__cause__, ClientError) and error_code(e.__cause__) == "InvalidPermission.Duplicate":
                existing = self._find(name, scope)
                if existing is not None:
                    logger.info(f"Security group rule {name} already exists as {existing.resource_id}")
                    return existing
            raise
        return _rule(dict(response["SecurityGroupRules"][0], PrefixListId=spec["prefix_list_id"]), scope)

    def update_resource(self, kind, resource_id, spec, scope):
        raise OperationError(
            "Security group rules cannot be updated in place", resource_type=kind, key=resource_id,
        )

    def delete_resource(self, kind, resource_id, scope):
        try:
            with translate_errors(f"revoke security group rule {resource_id}", resource_type=kind):
                self.client.revoke_security_group_ingress(
                    GroupId=scope["group_id"], SecurityGroupRuleIds=[resource_id],
                )
        except NotFoundError:
            logger.info(f"Security group rule {resource_id} is already gone")

    def _find(self, name: str, scope: Dict[str, str]):
        matches: List[ObservedResource] = [r for r in self.list_resources(None, scope) if r.name == name]
        return matches[0] if matches else None
