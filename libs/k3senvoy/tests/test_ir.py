"""Tests for the infrastructure IR."""

import pytest

from k3senvoy.errors import NilInfraError, ValidationError
from k3senvoy.ir import (
    DEFAULT_PROXY_IMAGE,
    Infra,
    ListenerPort,
    ProxyInfra,
    ProxyListener,
    new_infra,
    new_proxy_infra,
    new_proxy_listeners,
    proxy_infra_errors,
    validate_infra,
    validate_proxy_infra,
)
from k3senvoy.types import ProviderType


def _proxy_with_ports(*ports):
    return ProxyInfra(
        name="test",
        namespace="test",
        image="envoy:test",
        listeners=[ProxyListener(ports=list(ports))],
    )


class TestObjectName:
    def test_empty_name(self):
        assert ProxyInfra().object_name() == "envoy-default"

    @pytest.mark.parametrize("name", ["test", "default", "a-b-c"])
    def test_named(self, name):
        proxy = ProxyInfra(name=name)
        assert proxy.object_name() == f"envoy-{name}"
        assert proxy.object_name() == proxy.object_name()
        assert proxy.name == name


class TestConstructors:
    def test_new_infra_defaults(self):
        infra = new_infra()
        assert infra.provider == ProviderType.KUBERNETES
        assert infra.proxy.name == "default"
        assert infra.proxy.namespace == "default"
        assert infra.proxy.image == DEFAULT_PROXY_IMAGE
        assert infra.proxy.config is None

    def test_default_listeners(self):
        listeners = new_proxy_listeners()
        assert len(listeners) == 1
        assert listeners[0].address == ""
        assert [(p.name, p.port) for p in listeners[0].ports] == [("http", 80), ("https", 443)]

    def test_repeated_calls_are_equal_but_independent(self):
        first = new_proxy_infra()
        second = new_proxy_infra()
        assert first == second

        first.listeners[0].ports.append(ListenerPort(name="admin", port=9000))
        first.name = "changed"
        assert second == new_proxy_infra()
        assert new_infra() == new_infra()


class TestGetProvider:
    def test_unset(self):
        assert Infra().get_provider() == ProviderType.KUBERNETES

    def test_set(self):
        assert Infra(provider=ProviderType.KUBERNETES).get_provider() == ProviderType.KUBERNETES


class TestGetProxyInfra:
    def test_missing_proxy(self):
        assert Infra().get_proxy_infra() == new_proxy_infra()

    def test_partial_proxy_defaults_each_field(self):
        infra = Infra(proxy=ProxyInfra(name="test"))
        proxy = infra.get_proxy_infra()
        assert proxy.name == "test"
        assert proxy.namespace == "default"
        assert proxy.image == DEFAULT_PROXY_IMAGE
        assert proxy.listeners == new_proxy_listeners()

    def test_set_fields_preserved(self):
        listeners = [ProxyListener(address="0.0.0.0", ports=[ListenerPort(name="tcp", port=8080)])]
        infra = Infra(proxy=ProxyInfra(
            name="edge",
            namespace="gateways",
            image="envoy:1.0",
            config={"logging": "debug"},
            listeners=listeners,
        ))
        proxy = infra.get_proxy_infra()
        assert proxy.name == "edge"
        assert proxy.namespace == "gateways"
        assert proxy.image == "envoy:1.0"
        assert proxy.config == {"logging": "debug"}
        assert proxy.listeners == listeners

    def test_getter_does_not_mutate_input(self):
        infra = Infra(proxy=ProxyInfra(name="test"))
        infra.get_proxy_infra()
        assert infra.proxy.listeners == []
        assert infra.proxy.namespace == ""
        assert infra.proxy.image == ""

    def test_result_is_not_aliased(self):
        infra = Infra(proxy=_proxy_with_ports(ListenerPort(name="http", port=80)))
        proxy = infra.get_proxy_infra()
        proxy.listeners[0].ports[0].port = 1
        assert infra.proxy.listeners[0].ports[0].port == 80


class TestValidateInfra:
    def test_nil(self):
        with pytest.raises(NilInfraError):
            validate_infra(None)

    def test_nil_error_is_distinct_from_field_errors(self):
        with pytest.raises(ValueError) as exc_info:
            validate_infra(None)
        assert not isinstance(exc_info.value, ValidationError)
        assert str(exc_info.value) == "infra ir is nil"

    def test_default_infra_is_valid(self):
        validate_infra(new_infra())

    def test_infra_without_proxy_is_valid(self):
        validate_infra(Infra())

    def test_errors_are_accumulated(self):
        infra = Infra(proxy=ProxyInfra())
        with pytest.raises(ValidationError) as exc_info:
            validate_infra(infra)
        assert exc_info.value.errors == [
            "name field required",
            "namespace field required",
            "image field required",
        ]

    def test_listener_errors_are_accumulated(self):
        proxy = ProxyInfra(
            name="test",
            namespace="test",
            image="envoy:test",
            listeners=[
                ProxyListener(ports=[]),
                ProxyListener(ports=[ListenerPort(name="", port=0)]),
            ],
        )
        assert proxy_infra_errors(proxy) == [
            "listener ports field required",
            "listener name field required",
            "listener port must be a valid port number",
        ]

    def test_empty_listeners_are_valid(self):
        validate_proxy_infra(ProxyInfra(name="test", namespace="test", image="envoy:test"))

    def test_validation_does_not_mutate(self):
        infra = Infra(proxy=ProxyInfra(name="test", namespace="test", image="envoy:test"))
        validate_infra(infra)
        assert infra.proxy.listeners == []
        assert infra.provider is None

    def test_unsupported_provider(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_infra(Infra(provider="Docker"))
        assert "unsupported provider type: Docker" in exc_info.value.errors


class TestListenerPortRange:
    @pytest.mark.parametrize("port", [1, 80, 443, 65353, 65354, 65535])
    def test_valid_ports(self, port):
        validate_proxy_infra(_proxy_with_ports(ListenerPort(name="p", port=port)))

    @pytest.mark.parametrize("port", [-1, 0, 65536, 70000])
    def test_invalid_ports(self, port):
        with pytest.raises(ValidationError) as exc_info:
            validate_proxy_infra(_proxy_with_ports(ListenerPort(name="p", port=port)))
        assert exc_info.value.errors == ["listener port must be a valid port number"]

    def test_upper_bound_is_iana_maximum(self):
        # 65354-65535 were rejected by an earlier bound of 65353.
        assert proxy_infra_errors(_proxy_with_ports(ListenerPort(name="p", port=65535))) == []
        assert proxy_infra_errors(_proxy_with_ports(ListenerPort(name="p", port=65536))) != []


class TestSerialization:
    def test_from_dict(self):
        infra = Infra.from_dict({
            "provider": "Kubernetes",
            "proxy": {
                "name": "edge",
                "namespace": "gateways",
                "listeners": [
                    {"address": "0.0.0.0", "ports": [{"name": "http", "port": 8080}]},
                ],
            },
        })
        assert infra.provider == ProviderType.KUBERNETES
        assert infra.proxy.name == "edge"
        assert infra.proxy.image == ""
        assert infra.proxy.listeners[0].address == "0.0.0.0"
        assert infra.proxy.listeners[0].ports[0] == ListenerPort(name="http", port=8080)

    def test_from_dict_empty(self):
        assert Infra.from_dict(None) == Infra()

    def test_to_dict(self):
        data = new_infra().to_dict()
        assert data["provider"] == "Kubernetes"
        assert data["proxy"]["name"] == "default"
        assert data["proxy"]["listeners"] == [
            {"ports": [{"name": "http", "port": 80}, {"name": "https", "port": 443}]},
        ]
        assert Infra.from_dict(data) == new_infra()
