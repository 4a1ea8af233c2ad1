from __future__ import annotations

import asyncio

import pytest
import yaml

from conftest import Harness, make_profiles

from ksef_gui.core.schema import ConfigEditorData
from ksef_gui.domain import CertificateSettings, Profile, ProfileError
from ksef_gui.infrastructure.config import (
    TEMPLATE_CONFIG,
    ConfigStore,
    ProfileConfig,
    config_to_editor,
    editor_to_config,
)


def test_write_template_only_once(tmp_path):
    store = ConfigStore(tmp_path / "conf" / "config.yaml")

    assert store.write_template() is True
    assert store.path.read_text(encoding="utf-8") == TEMPLATE_CONFIG
    assert store.write_template() is False

    config = store.load()
    assert config.names() == {"default": "1234567890"}
    assert config.resolve().token == "YOUR_TOKEN_HERE"


def test_save_and_load_round_trip(tmp_path):
    store = ConfigStore(tmp_path / "config.yaml")
    config = ProfileConfig(
        active_profile="cert",
        profiles={
            "tok": Profile(name="tok", nip="1111111111", environment="demo", token="t-1"),
            "cert": Profile(
                name="cert",
                nip="2222222222",
                environment="prod",
                certificate=CertificateSettings(
                    private_key_file="~/key.pem", certificate_file="~/cert.pem", password_env="KSEF_PASS"
                ),
            ),
        },
    )

    store.save(config)

    document = yaml.safe_load(store.path.read_text(encoding="utf-8"))
    assert document["profiles"]["cert"]["certificate"] == {
        "private_key_file": "~/key.pem",
        "certificate_file": "~/cert.pem",
        "password_env": "KSEF_PASS",
    }
    loaded = store.load()
    assert loaded.active_profile == "cert"
    assert loaded.resolve().auth_method == "certificate"
    assert loaded.resolve("tok").token == "t-1"


def test_load_rejects_invalid_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("profiles: [unclosed", encoding="utf-8")

    with pytest.raises(ProfileError, match="Could not parse"):
        ConfigStore(path).load()


def test_resolve_errors():
    config = make_profiles()
    with pytest.raises(ProfileError, match="not found"):
        config.resolve("ghost")

    config.profiles["odd"] = Profile(name="odd", nip="1", environment="staging", token="t")
    with pytest.raises(ProfileError, match="unknown environment"):
        config.resolve("odd")

    with pytest.raises(ProfileError, match="Active profile not specified"):
        ProfileConfig(profiles=config.profiles).resolve()


def test_editor_mapping_round_trip(tmp_path):
    config = make_profiles()
    data = config_to_editor(config, tmp_path / "config.yaml", {"other": {"includeInAutoRefresh": False}})

    assert data["configFilePath"] == str((tmp_path / "config.yaml").resolve())
    by_name = {entry["name"]: entry for entry in data["profiles"]}
    assert by_name["main"]["token"] == "main-token"
    assert by_name["other"]["includeInAutoRefresh"] is False
    assert by_name["main"]["includeInAutoRefresh"] is True

    restored = editor_to_config(ConfigEditorData.model_validate(data))
    assert restored.names() == config.names()
    assert restored.profiles["main"].token == "main-token"


def test_save_config_persists_and_switches(tmp_path):
    store = ConfigStore(tmp_path / "config.yaml")
    harness = Harness(tmp_path, config_store=store)
    orchestrator = harness.orchestrator
    payload = ConfigEditorData.model_validate(
        {
            "activeProfile": "other",
            "profiles": [
                {"name": "main", "nip": "1111111111", "token": "main-token"},
                {"name": "other", "nip": "2222222222", "token": "other-token", "includeInAutoRefresh": False},
            ],
        }
    )

    async def scenario():
        await orchestrator.start()
        await orchestrator.save_config(payload)

    asyncio.run(scenario())

    assert orchestrator.active_profile == "other"
    assert store.load().active_profile == "other"
    assert harness.prefs.load()["profilePrefs"]["other"] == {"includeInAutoRefresh": False}
    harness.results.close()


def test_save_config_rolls_back_on_unusable_profile(tmp_path):
    store = ConfigStore(tmp_path / "config.yaml")
    harness = Harness(tmp_path, config_store=store)
    orchestrator = harness.orchestrator
    payload = ConfigEditorData.model_validate(
        {"activeProfile": "broken", "profiles": [{"name": "broken", "nip": "3333333333"}]}
    )

    async def scenario():
        await orchestrator.start()
        with pytest.raises(ProfileError):
            await orchestrator.save_config(payload)

    asyncio.run(scenario())

    assert orchestrator.active_profile == "main"
    assert "other" in orchestrator.preferences()["allProfiles"]
    assert not store.exists()
    harness.results.close()
