from relay.credentials import CredentialStore


def test_loads_existing_file(tmp_path):
    path = tmp_path / "users.txt"
    path.write_text("alice#pw1\n\nbob#p#w2\n", encoding="utf-8")
    store = CredentialStore(str(path))
    assert store.verify("alice", "pw1")
    assert store.verify("bob", "p#w2")
    assert not store.verify("alice", "wrong")
    assert not store.verify("carol", "")


def test_first_login_registers_user(credentials):
    assert credentials.check("alice", "pw1")
    assert "alice" in credentials
    assert credentials.path.read_text(encoding="utf-8") == "alice#pw1\n"
    assert credentials.check("alice", "pw1")
    assert not credentials.check("alice", "pw2")


def test_registered_users_survive_restart(credentials):
    credentials.check("alice", "pw1")
    credentials.check("bob", "pw2")
    reloaded = CredentialStore(str(credentials.path))
    assert reloaded.verify("alice", "pw1")
    assert reloaded.verify("bob", "pw2")


def test_unstorable_names_are_rejected(credentials):
    assert not credentials.check("", "pw")
    assert not credentials.check("a#b", "pw")
    assert not credentials.check("a\nb", "pw")
    assert not credentials.check("alice", "multi\nline")
    assert not credentials.path.exists()


def test_write_failure_fails_closed(tmp_path, caplog):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("", encoding="utf-8")
    store = CredentialStore(str(blocker / "users.txt"))
    assert not store.check("alice", "pw1")
    assert "alice" not in store
    assert "could not save details" in caplog.text
