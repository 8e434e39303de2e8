"""Tests for the command line entry point (in-memory SQLite stands in for PostgreSQL)."""

import pytest

from airflow_migrator import __main__ as cli
from airflow_migrator.crypto import FernetCodec, generate_key, validate_key
from airflow_migrator.migration import Connection, Migrator


def _answers(monkeypatch, *values):
    """Feed successive getpass prompts."""
    it = iter(values)
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(it))


def _add_profile(monkeypatch, capsys, name="dev", prefix="dev_", fernet_key=None):
    _answers(monkeypatch, "db-password", fernet_key or generate_key())
    code = cli.main([
        "profiles", "add", "--name", name, "--host", "db.internal",
        "--db", "airflow", "--user", "airflow", "--prefix", prefix,
    ])
    out = capsys.readouterr().out
    assert code == 0
    return out.strip().split()[-1]


class TestKeyCommands:

    def test_keygen(self, capsys):
        assert cli.main(["keygen"]) == 0
        assert validate_key(capsys.readouterr().out.strip())

    def test_validate_key(self, capsys):
        assert cli.main(["validate-key", generate_key()]) == 0
        assert capsys.readouterr().out.strip() == "valid"

        assert cli.main(["validate-key", "nope"]) == 1
        assert capsys.readouterr().out.strip() == "invalid"


class TestProfileCommands:

    def test_add_list_remove(self, monkeypatch, capsys):
        monkeypatch.setenv("AIRFLOW_MIGRATOR_PASSWORD", "master")
        profile_id = _add_profile(monkeypatch, capsys)

        assert cli.main(["profiles", "list"]) == 0
        listing = capsys.readouterr().out
        assert profile_id in listing
        assert "airflow@db.internal:5432/airflow" in listing
        assert "db-password" not in listing

        assert cli.main(["profiles", "remove", profile_id]) == 0
        capsys.readouterr()
        assert cli.main(["profiles", "list"]) == 0
        assert profile_id not in capsys.readouterr().out

    def test_vault_created_in_config_dir(self, monkeypatch, capsys, _isolate_config_dir):
        monkeypatch.setenv("AIRFLOW_MIGRATOR_PASSWORD", "master")
        _add_profile(monkeypatch, capsys)
        assert (_isolate_config_dir / "credentials.enc").exists()

    def test_invalid_fernet_key_rejected(self, monkeypatch, capsys):
        monkeypatch.setenv("AIRFLOW_MIGRATOR_PASSWORD", "master")
        _answers(monkeypatch, "db-password", "not-a-key")
        code = cli.main([
            "profiles", "add", "--name", "dev", "--host", "h", "--db", "d", "--user", "u",
        ])
        assert code == 1
        assert "invalid Fernet key" in capsys.readouterr().err

    def test_wrong_master_password(self, monkeypatch, capsys):
        monkeypatch.setenv("AIRFLOW_MIGRATOR_PASSWORD", "master")
        _add_profile(monkeypatch, capsys)

        monkeypatch.setenv("AIRFLOW_MIGRATOR_PASSWORD", "wrong")
        assert cli.main(["profiles", "list"]) == 2
        assert "invalid master password" in capsys.readouterr().err

    def test_first_run_password_confirmation(self, monkeypatch, capsys):
        _answers(monkeypatch, "one", "two")
        assert cli.main(["profiles", "list"]) == 1
        assert "passwords do not match" in capsys.readouterr().err

    def test_unknown_profile(self, monkeypatch, capsys):
        monkeypatch.setenv("AIRFLOW_MIGRATOR_PASSWORD", "master")
        assert cli.main(["test", "no-such-profile"]) == 1
        assert "profile not found: no-such-profile" in capsys.readouterr().err


def test_import_requires_key():
    with pytest.raises(SystemExit):
        cli.main(["import", "some-id", "file.csv"])


# ── Export / Import ─────────────────────────────────────────────────


@pytest.fixture
def environments(monkeypatch, capsys, make_store):
    """Two saved profiles, dev and prod, backed by in-memory stores."""
    monkeypatch.setenv("AIRFLOW_MIGRATOR_PASSWORD", "master")
    stores = {"dev": make_store(), "prod": make_store()}
    monkeypatch.setattr(
        Migrator, "_default_store_factory", lambda self, profile: stores[profile.name]
    )

    dev_key = generate_key()
    dev_id = _add_profile(monkeypatch, capsys, name="dev", prefix="", fernet_key=dev_key)
    prod_key = generate_key()
    prod_id = _add_profile(monkeypatch, capsys, name="prod", prefix="prod_", fernet_key=prod_key)

    stores["dev"].insert_connection(Connection(
        id="my_conn",
        conn_type="postgres",
        host="warehouse.internal",
        password=FernetCodec(dev_key).encrypt_string("pw1"),
        is_encrypted=True,
    ))
    stores["dev"].insert_connection(Connection(id="api", conn_type="http"))

    return {
        "dev": dev_id,
        "prod": prod_id,
        "prod_key": prod_key,
        "stores": stores,
    }


def _run_export(capsys, environments, output, *extra):
    assert cli.main(["export", environments["dev"], str(output), *extra]) == 0
    out = capsys.readouterr().out
    lines = [l for l in out.splitlines() if l.startswith("File encryption key")]
    return out, lines


class TestMigrationCommands:

    def test_export_prints_generated_key(self, environments, capsys, tmp_path):
        out, key_lines = _run_export(capsys, environments, tmp_path / "out.csv")

        assert "Exported 2 connection(s)" in out
        assert len(key_lines) == 1
        assert validate_key(key_lines[0].split(": ", 1)[1])

    def test_export_with_key_does_not_print_it(self, environments, capsys, tmp_path):
        key = generate_key()
        out, key_lines = _run_export(capsys, environments, tmp_path / "out.csv", "--key", key)

        assert key_lines == []
        assert key not in out

    def test_export_selected_ids(self, environments, capsys, tmp_path):
        out, _ = _run_export(
            capsys, environments, tmp_path / "out.csv", "--key", generate_key(), "--ids", "api",
        )
        assert "Exported 1 connection(s)" in out

    def test_import_uses_profile_prefix_by_default(self, environments, capsys, tmp_path):
        key = generate_key()
        path = tmp_path / "out.csv"
        _run_export(capsys, environments, path, "--key", key)

        code = cli.main(["import", environments["prod"], str(path), "--key", key])

        assert code == 0
        assert "Imported: 2" in capsys.readouterr().out
        prod = environments["stores"]["prod"]
        assert [c.id for c in prod.list_connections()] == ["prod_api", "prod_my_conn"]
        stored = prod.get_connection("prod_my_conn").password
        assert FernetCodec(environments["prod_key"]).decrypt_string(stored) == "pw1"

    def test_import_prefix_flag_overrides_profile(self, environments, capsys, tmp_path):
        key = generate_key()
        path = tmp_path / "out.csv"
        _run_export(capsys, environments, path, "--key", key)

        code = cli.main([
            "import", environments["prod"], str(path), "--key", key, "--prefix", "x_",
        ])

        assert code == 0
        prod = environments["stores"]["prod"]
        assert [c.id for c in prod.list_connections()] == ["x_api", "x_my_conn"]

    def test_failed_import_prints_counts_and_exits_1(self, environments, capsys, tmp_path):
        environments["stores"]["prod"].insert_connection(
            Connection(id="prod_my_conn", conn_type="postgres")
        )
        key = generate_key()
        path = tmp_path / "out.csv"
        _run_export(capsys, environments, path, "--key", key)

        code = cli.main(["import", environments["prod"], str(path), "--key", key])

        captured = capsys.readouterr()
        assert code == 1
        assert "Imported: 0  Skipped: 0  Overwritten: 0" in captured.out
        assert "connections already exist: prod_my_conn" in captured.err

    def test_import_skip_strategy(self, environments, capsys, tmp_path):
        environments["stores"]["prod"].insert_connection(
            Connection(id="prod_my_conn", conn_type="postgres")
        )
        key = generate_key()
        path = tmp_path / "out.csv"
        _run_export(capsys, environments, path, "--key", key)

        code = cli.main([
            "import", environments["prod"], str(path), "--key", key, "--strategy", "skip",
        ])

        assert code == 0
        assert "Imported: 1  Skipped: 1  Overwritten: 0" in capsys.readouterr().out

