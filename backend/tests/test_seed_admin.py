import database.db as db
from database.seed_admin import main


def test_seed_admin_creates_account(db_path, capsys):
    assert main(["registrar", "s3cret-pass"]) == 0
    assert "created" in capsys.readouterr().out
    assert db.verify_admin_credentials("registrar", "s3cret-pass")["username"] == "registrar"


def test_seed_admin_refuses_existing_username(db_path, capsys):
    assert main(["registrar", "s3cret-pass"]) == 0
    assert main(["REGISTRAR", "other"]) == 1
    assert "already exists" in capsys.readouterr().out
