"""Version manifest document"""

from datetime import datetime
from typing import Dict, List
from pydantic import BaseModel, ConfigDict, Field

# Sentinel deployment mapping value for the deployment that is live right now
CURRENT_VERSION_ID = "current"


class VersionRecord(BaseModel):
    """One retained build"""
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime
    expires: datetime
    assets: List[str] = Field(default_factory=list)
    deleted_chunks: List[str] = Field(default_factory=list, alias="deletedChunks")


class VersionManifest(BaseModel):
    """
    Singleton record describing every retained build of a deployment target.

    Persisted as JSON with camelCase keys:
    {
      "current": "v3",
      "versions": {"v3": {"timestamp", "expires", "assets", "deletedChunks"}},
      "deploymentMapping": {"dpl_abc": "current", "dpl_xyz": "v2"},
      "fileIdToVersion": {"entry.Bx81.js": "v3"},
      "assetToDeployment": {"_assets/entry.Bx81.js": "dpl_abc"}
    }
    """
    model_config = ConfigDict(populate_by_name=True)

    current: str = ""
    versions: Dict[str, VersionRecord] = Field(default_factory=dict)
    deployment_mapping: Dict[str, str] = Field(default_factory=dict, alias="deploymentMapping")
    file_id_to_version: Dict[str, str] = Field(default_factory=dict, alias="fileIdToVersion")
    asset_to_deployment: Dict[str, str] = Field(default_factory=dict, alias="assetToDeployment")

    def is_empty(self) -> bool:
        return not self.current or self.current not in self.versions

    def sorted_version_ids(self) -> List[str]:
        """Version ids, newest first by timestamp"""
        return [
            version_id
            for version_id, _ in sorted(
                self.versions.items(), key=lambda item: item[1].timestamp, reverse=True
            )
        ]

    def to_document(self) -> dict:
        """JSON-ready dict in the persisted camelCase shape"""
        return self.model_dump(mode="json", by_alias=True)


class VersionSummary(BaseModel):
    """Lightweight view of a retained version"""
    id: str
    created_at: datetime
