from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest

SCRIPTS_DIR = Path(__file__).resolve().parents[2] / "scripts"


@pytest.fixture()
def secrets_script():
    spec = importlib.util.spec_from_file_location("generate_secrets", SCRIPTS_DIR / "generate_secrets.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_generated_secret_length_and_validation(secrets_script) -> None:
    assert len(secrets_script.generate_secret(48)) == 64
    with pytest.raises(ValueError):
        secrets_script.generate_secret(0)


def test_env_file_assignment_is_replaced_in_place(secrets_script, tmp_path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("ADMIN_USER=RoomAdmin\nJWT_SECRET_KEY=old\n", encoding="utf-8")

    assert secrets_script.update_env_file(env_file, "JWT_SECRET_KEY", "new")
    assert not secrets_script.update_env_file(env_file, "WEBRTC_TURN_CREDENTIAL", "turn")

    assert env_file.read_text(encoding="utf-8").splitlines() == [
        "ADMIN_USER=RoomAdmin",
        "JWT_SECRET_KEY=new",
        "WEBRTC_TURN_CREDENTIAL=turn",
    ]


def test_cli_writes_requested_variable(secrets_script, tmp_path, capsys) -> None:
    env_file = tmp_path / "nested" / ".env"

    assert secrets_script.main(["WEBRTC_TURN_CREDENTIAL", "--update-env", str(env_file), "--silent"]) == 0

    assert env_file.read_text(encoding="utf-8").startswith("WEBRTC_TURN_CREDENTIAL=")
    assert capsys.readouterr().out == ""
