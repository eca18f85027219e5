from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client as k8s
from kubernetes.client.rest import ApiException
from kubernetes.config import ConfigException

from lattice_link.config import Settings
from lattice_link.errors import NotFoundError, OperationError, TransientProviderError
from lattice_link.models import ResourceStatus, ResourceType
from lattice_link.providers import build_driver, needs_cluster_driver
from lattice_link.providers.cluster import (
    KubernetesDriver,
    render_external_name,
    render_gateway,
    sanitize_kube_name,
    translate_api_exception,
)

GATEWAY = ResourceType.CLUSTER_GATEWAY
DNS = ResourceType.DNS_ALIAS
DNS_NAME = "svc1-0123456789abcdef.7d67968.vpc-lattice-svcs.us-west-2.on.aws"


def external_name_service(name="postgres", namespace="apps", external_name=DNS_NAME, port=5432,
                          service_type="ExternalName", deleting=False):
    return k8s.V1Service(
        metadata=k8s.V1ObjectMeta(
            name=name, namespace=namespace,
            deletion_timestamp="2026-01-01T00:00:00Z" if deleting else None,
        ),
        spec=k8s.V1ServiceSpec(
            type=service_type, external_name=external_name,
            ports=[k8s.V1ServicePort(port=port, protocol="TCP")],
        ),
    )


def gateway_object(name="sn1", namespace="apps", programmed=True):
    return {
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"gatewayClassName": "amazon-vpc-lattice"},
        "status": {"conditions": [{"type": "Programmed", "status": "True" if programmed else "False"}]},
    }


@pytest.fixture
def core():
    return MagicMock()


@pytest.fixture
def custom():
    return MagicMock()


@pytest.fixture
def kube(core, custom):
    return KubernetesDriver(core_api=core, custom_api=custom)


class TestRendering:
    def test_gateway_manifest(self):
        manifest = render_gateway("sn1", "apps", "amazon-vpc-lattice")

        assert manifest["apiVersion"] == "gateway.networking.k8s.io/v1"
        assert manifest["kind"] == "Gateway"
        assert manifest["metadata"]["labels"]["app.kubernetes.io/managed-by"] == "lattice-link"
        assert manifest["spec"]["gatewayClassName"] == "amazon-vpc-lattice"

    def test_external_name_manifest(self):
        manifest = render_external_name("postgres", "apps", DNS_NAME, 5432)

        assert manifest["spec"] == {
            "type": "ExternalName",
            "externalName": DNS_NAME,
            "ports": [{"port": 5432, "protocol": "TCP"}],
        }

    def test_values_cannot_inject_yaml(self):
        manifest = render_external_name("postgres\nkind: Secret", "apps", "evil.example\n  x: y", 5432)

        assert manifest["kind"] == "Service"
        assert manifest["metadata"]["name"] == "postgreskindsecret"
        assert manifest["spec"]["externalName"] == "evil.examplexy"

    def test_sanitize_kube_name_rejects_non_strings(self):
        assert sanitize_kube_name(None) == ""


class TestErrorTranslation:
    @pytest.mark.parametrize(
        "status, expected",
        [(404, NotFoundError), (409, TransientProviderError), (429, TransientProviderError),
         (503, TransientProviderError), (403, OperationError)],
    )
    def test_status_codes(self, status, expected):
        error = translate_api_exception(ApiException(status=status, reason="x"), "get service apps/postgres")

        assert isinstance(error, expected)


class TestAliases:
    def test_lists_only_external_name_services(self, core, kube):
        core.list_namespaced_service.return_value = k8s.V1ServiceList(items=[
            external_name_service(),
            external_name_service(name="db", service_type="ClusterIP", external_name=None),
        ])

        found = kube.list_resources(DNS, {"namespace": "apps"})

        assert [r.resource_id for r in found] == ["apps/postgres"]
        assert found[0].attributes == {"external_name": DNS_NAME, "port": 5432}

    def test_create_posts_rendered_manifest(self, core, kube):
        core.create_namespaced_service.return_value = external_name_service()

        created = kube.create_resource(DNS, "postgres", {"external_name": DNS_NAME, "port": 5432},
                                       {"namespace": "apps"})

        namespace, body = core.create_namespaced_service.call_args.args
        assert namespace == "apps"
        assert body["spec"]["externalName"] == DNS_NAME
        assert created.resource_id == "apps/postgres"

    def test_update_patches_in_place(self, core, kube):
        core.patch_namespaced_service.return_value = external_name_service(external_name="other.example")

        updated = kube.update_resource(DNS, "apps/postgres", {"external_name": "other.example", "port": 5432},
                                       {"namespace": "apps"})

        assert core.patch_namespaced_service.call_args.args[:2] == ("postgres", "apps")
        assert updated.attributes["external_name"] == "other.example"

    def test_terminating_service_reports_deleted(self, core, kube):
        core.read_namespaced_service.return_value = external_name_service(deleting=True)

        assert kube.get_resource(DNS, "apps/postgres", {"namespace": "apps"}).status == ResourceStatus.DELETED

    def test_missing_service_returns_none(self, core, kube):
        core.read_namespaced_service.side_effect = ApiException(status=404, reason="Not Found")

        assert kube.get_resource(DNS, "apps/postgres", {"namespace": "apps"}) is None

    def test_delete_of_missing_service_succeeds(self, core, kube):
        core.delete_namespaced_service.side_effect = ApiException(status=404, reason="Not Found")

        kube.delete_resource(DNS, "apps/postgres", {"namespace": "apps"})

    def test_conflict_is_transient(self, core, kube):
        core.create_namespaced_service.side_effect = ApiException(status=409, reason="Conflict")

        with pytest.raises(TransientProviderError):
            kube.create_resource(DNS, "postgres", {"external_name": DNS_NAME, "port": 5432},
                                 {"namespace": "apps"})


class TestGateways:
    def test_create_uses_gateway_api(self, custom, kube):
        custom.create_namespaced_custom_object.return_value = gateway_object(programmed=False)

        created = kube.create_resource(GATEWAY, "sn1", {"gateway_class": "amazon-vpc-lattice"},
                                       {"namespace": "apps"})

        group, version, namespace, plural, body = custom.create_namespaced_custom_object.call_args.args
        assert (group, version, namespace, plural) == ("gateway.networking.k8s.io", "v1", "apps", "gateways")
        assert body["metadata"]["name"] == "sn1"
        assert created.resource_id == "apps/sn1"
        assert created.attributes == {"gateway_class": "amazon-vpc-lattice", "programmed": False}

    def test_list_gateways(self, custom, kube):
        custom.list_namespaced_custom_object.return_value = {"items": [gateway_object()]}

        found = kube.list_resources(GATEWAY, {"namespace": "apps"})

        assert found[0].name == "sn1"
        assert found[0].attributes["programmed"] is True

    def test_gateways_are_never_patched(self, kube):
        with pytest.raises(OperationError):
            kube.update_resource(GATEWAY, "apps/sn1", {"gateway_class": "other"}, {"namespace": "apps"})


def test_config_falls_back_to_kubeconfig():
    with patch("lattice_link.providers.cluster.config") as config, \
            patch("lattice_link.providers.cluster.client") as api:
        config.ConfigException = Exception
        config.load_incluster_config.side_effect = Exception("not in a pod")

        KubernetesDriver(context="staging")

    config.load_kube_config.assert_called_once_with(context="staging")
    api.CoreV1Api.assert_called_once_with()


def test_missing_kubeconfig_is_an_operation_error():
    with patch("lattice_link.providers.cluster.config") as config:
        config.ConfigException = ConfigException
        config.load_incluster_config.side_effect = ConfigException("Service host/port is not set.")
        config.load_kube_config.side_effect = ConfigException("Invalid kube-config file. No configuration found.")

        with pytest.raises(OperationError, match="No configuration found"):
            KubernetesDriver()


class TestDriverWiring:
    def test_kubernetes_driver_is_skipped_when_disabled(self):
        with patch("lattice_link.providers.boto3") as boto, \
                patch("lattice_link.providers.cluster.KubernetesDriver") as kube:
            build_driver(Settings(enable_cluster=False), "us-west-2")

        kube.assert_not_called()
        boto.Session.assert_called_once_with(region_name="us-west-2")

    def test_kubernetes_driver_is_built_when_enabled(self):
        with patch("lattice_link.providers.boto3"), \
                patch("lattice_link.providers.cluster.KubernetesDriver") as kube:
            build_driver(Settings(kube_context="staging"), "us-west-2")

        kube.assert_called_once_with(context="staging")

    def test_graph_without_cluster_objects_does_not_need_it(self, scenario):
        assert needs_cluster_driver(scenario) is False

    def test_declared_cluster_objects_need_it(self, full_graph):
        assert needs_cluster_driver(full_graph) is True

    def test_cluster_objects_left_in_the_ledger_need_it(self, scenario, ledger):
        assert needs_cluster_driver(scenario, ledger) is False

        ledger.record(scenario.name, DNS, "apps/postgres", "apps/postgres", {"namespace": "apps"})

        assert needs_cluster_driver(scenario, ledger) is True
