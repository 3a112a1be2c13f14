"""HLS Transcoder Backend Application.

Accepts uploaded videos and converts them asynchronously into adaptive-bitrate
HLS playlists, tracking each job through a persisted status record.

Modules:
    - core: Configuration, database, Celery, logging, metrics and storage setup
    - modules.transcoding: Quality ladder, probing, FFmpeg encoding, artifact
      publishing, the job runner and the HTTP API
"""

__version__ = "0.1.0"
