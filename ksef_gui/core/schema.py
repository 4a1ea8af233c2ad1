from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ksef_gui.domain import FORMAT_RAW, FORMAT_RENDERED, FORMAT_SUMMARY, DownloadJob, SearchQuery


class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SearchRequest(_Body):
    subject_type: str = Field(alias="subjectType", min_length=1)
    date_from: str = Field(alias="from", min_length=1)
    date_to: str | None = Field(default=None, alias="to")
    date_type: str = Field(alias="dateType", min_length=1)
    source: Literal["manual", "auto"] | None = None

    def to_query(self) -> SearchQuery:
        return SearchQuery(
            subject_type=self.subject_type,
            date_from=self.date_from,
            date_to=self.date_to or None,
            date_type=self.date_type,
        )


class DownloadRequest(_Body):
    output_dir: str = Field(default="", alias="outputDir")
    selected_indices: list[int] | None = Field(default=None, alias="selectedIndices")
    custom_filenames: bool = Field(default=False, alias="customFilenames")
    export_xml: bool = Field(default=True, alias="exportXml")
    export_json: bool = Field(default=False, alias="exportJson")
    export_pdf: bool = Field(default=False, alias="exportPdf")
    separate_by_nip: bool = Field(default=False, alias="separateByNip")

    def to_job(self) -> DownloadJob:
        formats: set[str] = set()
        if self.export_xml:
            formats.add(FORMAT_RAW)
        if self.export_json:
            formats.add(FORMAT_SUMMARY)
        if self.export_pdf:
            formats.add(FORMAT_RENDERED)
        return DownloadJob(
            target_dir=self.output_dir,
            formats=frozenset(formats),
            selected_indices=list(self.selected_indices) if self.selected_indices else None,
            per_identity_subdir=self.separate_by_nip,
            custom_filenames=self.custom_filenames,
        )


class CheckExistingRequest(_Body):
    output_dir: str = Field(default="", alias="outputDir")
    custom_filenames: bool = Field(default=False, alias="customFilenames")
    separate_by_nip: bool = Field(default=False, alias="separateByNip")


class MkdirRequest(_Body):
    path: str = Field(min_length=1)


class ProfileEditorData(_Body):
    name: str = Field(min_length=1)
    nip: str = ""
    environment: str = "test"
    auth_method: Literal["token", "certificate"] = Field(default="token", alias="authMethod")
    token: str | None = None
    cert_private_key_file: str | None = Field(default=None, alias="certPrivateKeyFile")
    cert_certificate_file: str | None = Field(default=None, alias="certCertificateFile")
    cert_password: str | None = Field(default=None, alias="certPassword")
    cert_password_env: str | None = Field(default=None, alias="certPasswordEnv")
    cert_password_file: str | None = Field(default=None, alias="certPasswordFile")
    include_in_auto_refresh: bool = Field(default=True, alias="includeInAutoRefresh")


class ConfigEditorData(_Body):
    active_profile: str = Field(default="", alias="activeProfile")
    config_file_path: str | None = Field(default=None, alias="configFilePath")
    profiles: list[ProfileEditorData] = Field(default_factory=list)

    def dump(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
