from toolchat.credentials import CredentialStore
from toolchat.db import Database


def test_stored_key_wins_over_environment(tmp_path):
    db = Database(tmp_path / "toolchat.db")
    db.initialize()
    store = CredentialStore(db, "user-1", {"tavily": "env-key", "weather": ""})

    assert store.get("tavily") == "env-key"
    assert store.get("weather") is None
    assert not store.has("weather")

    store.set("tavily", "user-key")
    assert store.get("tavily") == "user-key"
    assert db.get_credential("user-1", "tavily") == "user-key"

    store.remove("tavily")
    assert store.get("tavily") == "env-key"


def test_signed_out_keys_live_in_session_only():
    store = CredentialStore(None, None, {})

    store.set("groq", "session-key")

    assert store.get("groq") == "session-key"
    assert CredentialStore(None, None, {}).get("groq") is None
