from spice.engines.base import AdgUploadRequest, SurveyRequest, Surveyor, Uploader
from spice.engines.ginger import GingerUploader
from spice.engines.goatrodeo import GoatRodeoSurveyor

__all__ = [
    "AdgUploadRequest",
    "GingerUploader",
    "GoatRodeoSurveyor",
    "SurveyRequest",
    "Surveyor",
    "Uploader",
]
