"""Tests de bout en bout de la ligne de commande (hôte factice)."""

from __future__ import annotations

import pytest

from wg_provisioner import cli, ports, provision
from wg_provisioner.errors import ClientAddressExhausted
from tests.conftest import FakeHost


@pytest.fixture
def fake_system(monkeypatch):
    host = FakeHost()
    monkeypatch.setattr(provision, "Host", lambda: host)
    monkeypatch.setattr(cli, "Host", lambda: host)
    monkeypatch.setattr(ports, "listening_udp_ports", lambda: set())
    return host


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 0
    assert "wg-provisioner" in capsys.readouterr().out


def test_list_empty(settings, capsys):
    assert cli.main(["--config-dir", str(settings.config_dir), "list"]) == 0
    assert "Aucune interface." in capsys.readouterr().out


def test_create_then_add_client(settings, fake_system, capsys):
    base = ["--config-dir", str(settings.config_dir)]

    rc = cli.main(base + ["create-interface", "--name", "wg1", "--subnet4", "10.10.0.0/24", "--no-ipv6"])
    assert rc == 0
    assert "1.1.1.1" in capsys.readouterr().out

    rc = cli.main(base + ["add-client", "--interface", "wg1", "--name", "alice", "--no-qr"])
    assert rc == 0
    assert "10.10.0.2/32" in capsys.readouterr().out

    cli.main(base + ["list"])
    out = capsys.readouterr().out
    assert "=== wg1 ===" in out
    assert "Peers     : 1" in out
    assert "alice" in out


def test_add_client_writes_qr_png(settings, fake_system):
    base = ["--config-dir", str(settings.config_dir)]
    cli.main(base + ["create-interface", "--name", "wg1", "--subnet4", "10.10.0.0/24", "--no-ipv6"])
    assert cli.main(base + ["add-client", "--interface", "wg1"]) == 0
    assert (settings.client_dir / "wg1" / "client1.conf.png").is_file()


def test_errors_become_exit_status(settings, fake_system, capsys):
    base = ["--config-dir", str(settings.config_dir)]
    rc = cli.main(base + ["add-client", "--interface", "wg9", "--no-qr"])
    assert rc == 1
    assert "[ERREUR]" in capsys.readouterr().out


def test_invalid_subnet_reprompts(settings, fake_system, monkeypatch, capsys):
    answers = iter(["10.10.0/24", "10.10.0.0/24"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))
    base = ["--config-dir", str(settings.config_dir)]

    assert cli.main(base + ["create-interface", "--name", "wg1", "--no-ipv6"]) == 0
    assert "[ERREUR]" in capsys.readouterr().out


def test_menu_quit_saves_rules(settings, fake_system, monkeypatch, capsys):
    answers = iter(["9", "3", "4"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))
    saved = []
    monkeypatch.setattr(fake_system, "save_rules", lambda rules_dir: saved.append(rules_dir) or [])

    assert cli.main(["--config-dir", str(settings.config_dir), "menu"]) == 0
    out = capsys.readouterr().out
    assert "Option invalide" in out
    assert "Aucune interface." in out
    assert saved


def test_retryable_hint(capsys):
    cli.report_error(ClientAddressExhausted("fd00::/64", retryable=True))
    out = capsys.readouterr().out
    assert "[ERREUR]" in out
    assert "Relancer" in out

    cli.report_error(ClientAddressExhausted("10.0.0.0/29"))
    assert "Relancer" not in capsys.readouterr().out


def _eof(prompt=""):
    raise EOFError


def test_menu_end_of_input_saves_rules(settings, fake_system, monkeypatch, capsys):
    monkeypatch.setattr("builtins.input", _eof)
    saved = []
    monkeypatch.setattr(fake_system, "save_rules", lambda rules_dir: saved.append(rules_dir) or [])

    assert cli.main(["--config-dir", str(settings.config_dir), "menu"]) == 0
    assert saved
    assert "au revoir" in capsys.readouterr().out


def test_menu_reports_retryable_error(settings, fake_system, monkeypatch, capsys):
    answers = iter(["3"])

    def scripted(prompt=""):
        try:
            return next(answers)
        except StopIteration:
            raise EOFError

    def exhausted(args, settings):
        raise ClientAddressExhausted("fd00::/64", retryable=True)

    monkeypatch.setattr("builtins.input", scripted)
    monkeypatch.setattr(cli, "cmd_list", exhausted)

    assert cli.main(["--config-dir", str(settings.config_dir), "menu"]) == 0
    assert "Relancer la commande peut suffire." in capsys.readouterr().out
