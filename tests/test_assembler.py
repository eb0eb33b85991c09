from unittest.mock import MagicMock

import pytest

from fakes import ssr_record, static_record
from sitebind.assembler import EnvironmentAssembler, ResolvedBinding, are_envs_same


class TestAreEnvsSame:
    def test_order_independent(self) -> None:
        assert are_envs_same({"a": "1", "b": "2"}, {"b": "2", "a": "1"})

    def test_different_value(self) -> None:
        assert not are_envs_same({"a": "1", "b": "2"}, {"a": "1", "b": "3"})

    def test_different_keys(self) -> None:
        assert not are_envs_same({"a": "1"}, {"a": "1", "b": "2"})
        assert not are_envs_same({"a": "1", "b": "2"}, {"a": "1", "c": "2"})

    def test_empty(self) -> None:
        assert are_envs_same({}, {})


class TestEnvironmentAssembler:
    @pytest.mark.asyncio
    async def test_static_site_uses_declared_environment(self) -> None:
        client = MagicMock()
        assembler = EnvironmentAssembler(lambda_client=client)

        binding = await assembler.assemble(static_record(environment={"PUBLIC_URL": "https://example.com"}))

        assert binding == ResolvedBinding(envs={"PUBLIC_URL": "https://example.com"})
        assert binding.role is None
        client.get_function_configuration.assert_not_called()

    @pytest.mark.asyncio
    async def test_server_rendered_site_reads_function_configuration(self) -> None:
        client = MagicMock()
        client.get_function_configuration.return_value = {
            "Role": "arn:aws:iam::123456789012:role/server",
            "Environment": {"Variables": {"TABLE": "users"}},
        }
        assembler = EnvironmentAssembler(lambda_client=client)

        binding = await assembler.assemble(ssr_record(server="my-fn", secrets=["STRIPE_KEY"]))

        client.get_function_configuration.assert_called_once_with(FunctionName="my-fn")
        assert binding.envs == {"TABLE": "users"}
        assert binding.role == "arn:aws:iam::123456789012:role/server"
        assert binding.secrets == frozenset({"STRIPE_KEY"})

    @pytest.mark.asyncio
    async def test_function_without_environment(self) -> None:
        client = MagicMock()
        client.get_function_configuration.return_value = {"Role": "arn:aws:iam::1:role/r"}
        assembler = EnvironmentAssembler(lambda_client=client)

        binding = await assembler.assemble(ssr_record())

        assert binding.envs == {}

    @pytest.mark.asyncio
    async def test_lambda_errors_propagate(self) -> None:
        client = MagicMock()
        client.get_function_configuration.side_effect = ConnectionError("offline")
        assembler = EnvironmentAssembler(lambda_client=client)

        with pytest.raises(ConnectionError):
            await assembler.assemble(ssr_record())
