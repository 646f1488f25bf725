from .deck import Deck, Entity  # noqa: F401
from .slide import GeneratedImage, Slide  # noqa: F401
from .user_settings import GoogleCredentials, GoogleSlidesSettings, UserSettings  # noqa: F401
from .job import Job, JobProgress, JobSlideResult  # noqa: F401
