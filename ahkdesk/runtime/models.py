from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from enum import Enum
from datetime import datetime


class DiscoverySource(str, Enum):
    REGISTRY = "registry"
    COMMON_PATH = "common-path"
    SEARCH_PATH = "search-path"


class InstallStage(str, Enum):
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    VERIFYING = "verifying"
    COMPLETE = "complete"


class Compression(str, Enum):
    NONE = "none"
    UPX = "upx"


class BaseRuntime(str, Enum):
    X86 = "32-bit"
    X64 = "64-bit"

    @property
    def base_file(self) -> str:
        return "AutoHotkey32.exe" if self is BaseRuntime.X86 else "AutoHotkey64.exe"


class InstallationStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    installed: bool
    path: Optional[str] = None
    version: Optional[str] = None
    source: Optional[DiscoverySource] = None


class InstallProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: InstallStage
    progress: int = Field(ge=0, le=100)
    message: Optional[str] = None


class InstallResult(BaseModel):
    path: str
    version: str


class RunningProcessRecord(BaseModel):
    process_id: int
    script_path: str
    start_time: datetime


class CompileOptions(BaseModel):
    icon: Optional[str] = None
    compression: Optional[Compression] = None
    base: Optional[BaseRuntime] = None
    output_path: Optional[str] = None
