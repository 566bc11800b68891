"""Services for Kardly."""

from kardly.services.add_photocard import PhotocardResult, PhotocardWorkflow, WorkflowState
from kardly.services.asset_store import AssetHandle, AssetStore, CloudinaryStore, LocalAssetStore, get_asset_store
from kardly.services.references import References, ReferenceValidator
from kardly.services.uploads import UploadIntent, build_upload_intent

__all__ = [
    "AssetHandle",
    "AssetStore",
    "CloudinaryStore",
    "LocalAssetStore",
    "get_asset_store",
    "PhotocardResult",
    "PhotocardWorkflow",
    "WorkflowState",
    "References",
    "ReferenceValidator",
    "UploadIntent",
    "build_upload_intent",
]
