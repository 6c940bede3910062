"""
MediaGate ORM models.

Importing this package registers every mapped class on `Base.metadata`, which
keeps relationship string references ("Project", "Video") resolvable.
"""

from mediagate.db.models.album_analytics import AlbumAnalytics
from mediagate.db.models.project import Album, AlbumPhoto, Project, Video, VideoAsset
from mediagate.db.models.security_event import SecurityEvent
from mediagate.db.models.security_settings import SecuritySettings
from mediagate.db.models.video_analytics import VideoAnalytics

__all__ = [
    "Project",
    "Video",
    "VideoAsset",
    "Album",
    "AlbumPhoto",
    "SecurityEvent",
    "SecuritySettings",
    "VideoAnalytics",
    "AlbumAnalytics",
]
