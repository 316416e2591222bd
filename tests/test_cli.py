"""
Test suite for the command-line interface.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from relayer.cli import (
    attest_message,
    build_config,
    create_parser,
    print_result,
    send_message,
    show_history,
)
from relayer.config import NetworkType, get_config
from relayer.core.errors import AttestationTimeoutError, UserRejected
from relayer.core.relay import RelayRecord, RelayResult, RelayStage
from relayer.core.types import AttestationArtifact

from conftest import DESTINATION, generate_test_fingerprint


def parse(*argv):
    return create_parser().parse_args(list(argv))


class TestParser:
    """Tests for argument parsing and configuration."""

    def test_send_arguments(self):
        args = parse("send", "--destination", DESTINATION, "--message", "hello", "--nonce", "3")

        assert args.command == "send"
        assert args.destination == DESTINATION
        assert args.message == "hello"
        assert args.nonce == 3
        assert args.payload_hex is None

    def test_send_requires_payload(self):
        with pytest.raises(SystemExit):
            parse("send", "--destination", DESTINATION)

    def test_build_config_overrides(self):
        args = parse(
            "send", "--destination", DESTINATION, "--message", "hello",
            "--network", "local", "--max-attempts", "5", "--simulate",
        )

        config = build_config(args)

        assert config.network == NetworkType.LOCAL
        assert config.max_submit_attempts == 5
        assert config.skip_simulation is False
        assert config.ledger_rpc_url == "http://localhost:8899"
        assert get_config() is config

    def test_build_config_keeps_defaults(self):
        config = build_config(parse("history"))

        assert config.max_submit_attempts == 3
        assert config.skip_simulation is True


class TestCommands:
    """Tests for command handlers."""

    def _ok_result(self):
        record = RelayRecord(destination=DESTINATION, payload=b"hello")
        artifact = AttestationArtifact(generate_test_fingerprint(), b"\xaa\xbb")
        record.mark_done(artifact)
        return RelayResult(record=record, artifact=artifact)

    def test_print_result_exit_codes(self, capsys):
        assert print_result(self._ok_result()) == 0
        assert "aabb" in capsys.readouterr().out

        record = RelayRecord(destination=DESTINATION, payload=b"hello")
        record.advance(RelayStage.SIGNING)
        error = UserRejected("declined")
        record.mark_failed(error)
        assert print_result(RelayResult(record=record, error=error)) == 1
        assert "UserRejected" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_send_message(self):
        args = parse(
            "send", "--destination", DESTINATION, "--message", "hello",
            "--database-url", "",
        )
        orchestrator = MagicMock()
        orchestrator.initialize = AsyncMock()
        orchestrator.shutdown = AsyncMock()
        orchestrator.relay = AsyncMock(return_value=self._ok_result())

        with patch("relayer.cli.RelayOrchestrator", return_value=orchestrator), \
                patch("relayer.cli.KeypairSigner") as signer_cls:
            exit_code = await send_message(args)

        assert exit_code == 0
        payload, destination, signer = orchestrator.relay.call_args.args
        assert payload == b"hello"
        assert destination == DESTINATION
        assert signer is signer_cls.from_config.return_value
        orchestrator.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_payload_hex(self):
        args = parse(
            "send", "--destination", DESTINATION, "--payload-hex", "0102",
            "--database-url", "",
        )
        orchestrator = MagicMock()
        orchestrator.initialize = AsyncMock()
        orchestrator.shutdown = AsyncMock()
        orchestrator.relay = AsyncMock(return_value=self._ok_result())

        with patch("relayer.cli.RelayOrchestrator", return_value=orchestrator), \
                patch("relayer.cli.KeypairSigner"):
            await send_message(args)

        assert orchestrator.relay.call_args.args[0] == b"\x01\x02"

    @pytest.mark.asyncio
    async def test_history_empty(self, tmp_path, capsys):
        args = parse("history", "--database-url", f"sqlite+aiosqlite:///{tmp_path}/cli.db")

        assert await show_history(args) == 0
        assert "No relays recorded." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_history_without_journal(self, capsys):
        args = parse("history", "--database-url", "")

        assert await show_history(args) == 1


def mock_orchestrator() -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.initialize = AsyncMock()
    orchestrator.shutdown = AsyncMock()
    return orchestrator


class TestCommandErrors:
    """Tests that relay failures become an error report and exit code 1."""

    @pytest.mark.asyncio
    async def test_send_malformed_payload_hex(self, capsys):
        args = parse(
            "send", "--destination", DESTINATION, "--payload-hex", "zz",
            "--database-url", "",
        )

        with patch("relayer.cli.RelayOrchestrator") as orchestrator_cls, \
                patch("relayer.cli.KeypairSigner"):
            exit_code = await send_message(args)

        assert exit_code == 1
        assert "InvalidInputError" in capsys.readouterr().out
        orchestrator_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_unreadable_keypair(self, tmp_path, capsys):
        keypair_path = tmp_path / "keypair.json"
        keypair_path.write_text("not json")
        args = parse(
            "send", "--destination", DESTINATION, "--message", "hello",
            "--database-url", "", "--keypair", str(keypair_path),
        )

        with patch("relayer.cli.RelayOrchestrator") as orchestrator_cls:
            exit_code = await send_message(args)

        assert exit_code == 1
        assert "SignerUnavailableError" in capsys.readouterr().out
        orchestrator_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_attest_malformed_message_id(self, capsys):
        args = parse("attest", "--message-id", "not-a-message-id", "--database-url", "")
        orchestrator = mock_orchestrator()

        with patch("relayer.cli.RelayOrchestrator", return_value=orchestrator):
            exit_code = await attest_message(args)

        assert exit_code == 1
        assert "Malformed message id" in capsys.readouterr().out
        orchestrator.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_attest_timeout(self, capsys):
        fingerprint = generate_test_fingerprint()
        args = parse("attest", "--message-id", fingerprint.vaa_id, "--database-url", "")
        orchestrator = mock_orchestrator()
        orchestrator.attest = AsyncMock(
            side_effect=AttestationTimeoutError("No attestation", fingerprint=fingerprint)
        )

        with patch("relayer.cli.RelayOrchestrator", return_value=orchestrator):
            exit_code = await attest_message(args)

        out = capsys.readouterr().out
        assert exit_code == 1
        assert "AttestationTimeoutError" in out
        assert fingerprint.vaa_id in out
        orchestrator.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_attest_relay_id_without_journal(self, capsys):
        args = parse("attest", "--relay-id", "abc", "--database-url", "")

        with patch("relayer.cli.RelayOrchestrator") as orchestrator_cls:
            exit_code = await attest_message(args)

        assert exit_code == 1
        assert "journal disabled" in capsys.readouterr().out
        orchestrator_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_attest_unknown_relay_id(self, tmp_path, capsys):
        args = parse(
            "attest", "--relay-id", "missing",
            "--database-url", f"sqlite+aiosqlite:///{tmp_path}/cli.db",
        )

        with patch("relayer.core.orchestrator.SolanaRpcClient") as chain_cls, \
                patch("relayer.core.orchestrator.GuardianAttestationService") as service_cls:
            chain_cls.return_value.connect = AsyncMock()
            chain_cls.return_value.disconnect = AsyncMock()
            service_cls.return_value.connect = AsyncMock()
            service_cls.return_value.disconnect = AsyncMock()
            exit_code = await attest_message(args)

        assert exit_code == 1
        assert "Unknown relay id" in capsys.readouterr().out
