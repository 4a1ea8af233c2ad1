"""YAML profile configuration: loading, saving and the editor mapping."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ksef_gui.core.schema import ConfigEditorData, ProfileEditorData
from ksef_gui.domain import CertificateSettings, Profile, ProfileError

logger = logging.getLogger(__name__)

TEMPLATE_CONFIG = """# ksef-gui configuration file
#
# Configure at least one profile, then restart or save from the settings page.

# active_profile: default

profiles:
  default:
    nip: "1234567890"
    environment: test  # demo or prod

    # Option 1: long-term KSeF token (recommended)
    token: "YOUR_TOKEN_HERE"

    # Option 2: certificate based authentication
    # certificate:
    #   private_key_file: ~/path/to/private.key
    #   certificate_file: ~/path/to/certificate.pem
    #   password: "certificate_password"
    #   # or read the password from an environment variable:
    #   # password_env: KSEF_CERT_PASSWORD
"""

ENVIRONMENTS = ("test", "demo", "prod")


@dataclass(slots=True)
class ProfileConfig:
    active_profile: str = ""
    profiles: dict[str, Profile] = field(default_factory=dict)

    def resolve(self, name: str | None = None) -> Profile:
        """Return the named profile, falling back to the active or single profile."""

        selected = (name or self.active_profile or "").strip()
        if not selected:
            if len(self.profiles) == 1:
                selected = next(iter(self.profiles))
            else:
                raise ProfileError("Active profile not specified in config file")
        profile = self.profiles.get(selected)
        if profile is None:
            raise ProfileError(f"Profile '{selected}' not found in configuration")
        if profile.environment.strip().lower() not in ENVIRONMENTS:
            raise ProfileError(f"Profile '{selected}' has unknown environment '{profile.environment}'")
        return profile

    def names(self) -> dict[str, str]:
        return {name: profile.nip for name, profile in self.profiles.items()}


def _profile_from_yaml(name: str, data: dict[str, Any]) -> Profile:
    cert_data = data.get("certificate")
    certificate = None
    if isinstance(cert_data, dict):
        certificate = CertificateSettings(
            private_key_file=cert_data.get("private_key_file"),
            certificate_file=cert_data.get("certificate_file"),
            password=cert_data.get("password"),
            password_env=cert_data.get("password_env"),
            password_file=cert_data.get("password_file"),
        )
    return Profile(
        name=name,
        nip=str(data.get("nip") or ""),
        environment=str(data.get("environment") or "test"),
        token=data.get("token"),
        certificate=certificate,
    )


def _profile_to_yaml(profile: Profile) -> dict[str, Any]:
    entry: dict[str, Any] = {"nip": profile.nip, "environment": profile.environment}
    if profile.certificate is not None:
        cert = profile.certificate
        entry["certificate"] = {
            key: value
            for key, value in (
                ("private_key_file", cert.private_key_file),
                ("certificate_file", cert.certificate_file),
                ("password", cert.password),
                ("password_env", cert.password_env),
                ("password_file", cert.password_file),
            )
            if value
        }
    elif profile.token:
        entry["token"] = profile.token
    return entry


class ConfigStore:
    """Reads and writes the profile YAML file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def write_template(self) -> bool:
        """Create a template config; returns False when a file already exists."""

        if self._path.exists():
            return False
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(TEMPLATE_CONFIG, encoding="utf-8")
        logger.info("Created template config file: %s", self._path)
        return True

    def load(self) -> ProfileConfig:
        if not self._path.exists():
            raise ProfileError(f"Configuration file not found: {self._path}")
        try:
            with self._path.open("r", encoding="utf-8") as fp:
                raw = yaml.safe_load(fp) or {}
        except yaml.YAMLError as exc:
            raise ProfileError(f"Could not parse configuration file '{self._path}': {exc}") from exc
        if not isinstance(raw, dict):
            raise ProfileError(f"Configuration file '{self._path}' must contain a mapping")

        profiles_raw = raw.get("profiles") or {}
        profiles = {
            str(name): _profile_from_yaml(str(name), data or {})
            for name, data in profiles_raw.items()
        }
        return ProfileConfig(active_profile=str(raw.get("active_profile") or ""), profiles=profiles)

    def save(self, config: ProfileConfig) -> None:
        document = {
            "active_profile": config.active_profile,
            "profiles": {name: _profile_to_yaml(profile) for name, profile in config.profiles.items()},
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as fp:
            yaml.safe_dump(document, fp, allow_unicode=True, sort_keys=False)
        logger.info(
            "Config saved: %s (%d profile(s), active=%s)",
            self._path,
            len(config.profiles),
            config.active_profile,
        )


# ----------------------------------------------------------------------
# editor payload mapping
# ----------------------------------------------------------------------
def config_to_editor(config: ProfileConfig, path: Path, profile_prefs: dict[str, Any]) -> dict[str, Any]:
    profiles = []
    for name, profile in config.profiles.items():
        cert = profile.certificate or CertificateSettings()
        include = (profile_prefs.get(name) or {}).get("includeInAutoRefresh") is not False
        profiles.append(
            ProfileEditorData(
                name=name,
                nip=profile.nip,
                environment=profile.environment,
                auth_method=profile.auth_method,
                token=profile.token,
                cert_private_key_file=cert.private_key_file,
                cert_certificate_file=cert.certificate_file,
                cert_password=cert.password,
                cert_password_env=cert.password_env,
                cert_password_file=cert.password_file,
                include_in_auto_refresh=include,
            )
        )
    data = ConfigEditorData(
        active_profile=config.active_profile,
        config_file_path=str(path.resolve()),
        profiles=profiles,
    )
    return data.dump()


def editor_to_config(data: ConfigEditorData) -> ProfileConfig:
    profiles: dict[str, Profile] = {}
    for entry in data.profiles:
        if entry.auth_method == "certificate":
            profile = Profile(
                name=entry.name,
                nip=entry.nip,
                environment=entry.environment,
                certificate=CertificateSettings(
                    private_key_file=entry.cert_private_key_file,
                    certificate_file=entry.cert_certificate_file,
                    password=entry.cert_password,
                    password_env=entry.cert_password_env,
                    password_file=entry.cert_password_file,
                ),
            )
        else:
            profile = Profile(name=entry.name, nip=entry.nip, environment=entry.environment, token=entry.token)
        profiles[entry.name] = profile
    return ProfileConfig(active_profile=data.active_profile, profiles=profiles)


def editor_profile_prefs(data: ConfigEditorData) -> dict[str, dict[str, bool]]:
    return {entry.name: {"includeInAutoRefresh": entry.include_in_auto_refresh} for entry in data.profiles}
