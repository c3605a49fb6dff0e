from .pipeline import UploadPipeline, UploadSession
from .uploader import Uploader

__all__ = ["UploadPipeline", "UploadSession", "Uploader"]
