import json
import os

from splice_alt.config import JsonFileSettingsStore, MemorySettingsStore, load_settings

DEFAULTS = {"enabled": True, "autoCapture": True}


class TestLoadSettings:

    def test_defaults(self, monkeypatch, tmp_path):
        for name in ("PORT", "MAX_KEYS", "KEEP_KEYS", "RETRY_DELAY_SECONDS", "WRITE_MODE", "PUBLIC_BASE_URL"):
            monkeypatch.delenv(f"SPLICE_ALT_{name}", raising=False)
        settings = load_settings(env_file=tmp_path / "missing.env")

        assert settings.port == 8765
        assert settings.max_keys == 50
        assert settings.keep_keys == 30
        assert settings.retry_delay == 2.0
        assert settings.write_mode == "host"
        assert settings.public_base_url == f"http://{settings.host}:8765"

    def test_env_file_and_prefix(self, monkeypatch, tmp_path):
        for name in ("PORT", "RETRY_DELAY_SECONDS", "CORS_ORIGINS", "NOTIFY_WEBHOOK_URL"):
            monkeypatch.delenv(f"SPLICE_ALT_{name}", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text(
            "SPLICE_ALT_PORT=9000\n"
            "SPLICE_ALT_RETRY_DELAY_SECONDS=0.5\n"
            "SPLICE_ALT_CORS_ORIGINS=chrome-extension://abc, http://localhost:3000\n"
        )
        try:
            settings = load_settings(env_file=env_file)
        finally:
            # load_dotenv writes straight into os.environ
            for name in ("PORT", "RETRY_DELAY_SECONDS", "CORS_ORIGINS"):
                os.environ.pop(f"SPLICE_ALT_{name}", None)

        assert settings.port == 9000
        assert settings.retry_delay == 0.5
        assert settings.cors_origins == ["chrome-extension://abc", "http://localhost:3000"]
        assert settings.notify_webhook_url is None


class TestSettingsStores:

    async def test_memory_store_merges(self):
        store = MemorySettingsStore({"enabled": False})
        assert await store.get(DEFAULTS) == {"enabled": False, "autoCapture": True}

        await store.set({"autoCapture": False})
        assert await store.get(DEFAULTS) == {"enabled": False, "autoCapture": False}

    async def test_json_store_persists(self, tmp_path):
        path = tmp_path / "nested" / "settings.json"
        await JsonFileSettingsStore(path).set({"enabled": False})

        reopened = JsonFileSettingsStore(path)
        assert await reopened.get(DEFAULTS) == {"enabled": False, "autoCapture": True}
        assert json.loads(path.read_text()) == {"enabled": False}

    async def test_json_store_tolerates_corrupt_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json")

        assert await JsonFileSettingsStore(path).get(DEFAULTS) == DEFAULTS
